"""Messenger Hub: relay between customer chat channels and a team Hub."""
