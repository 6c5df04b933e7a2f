"""Print the logging configuration the relay would start with."""

import json
import logging
import os
import sys

from messenger_hub.app_logging import APP_LOGGER_NAME, LogConfig


def get_log_config() -> dict:
    config = LogConfig.from_env()
    log_dir = os.path.abspath(config.log_dir)
    return {
        "logger": APP_LOGGER_NAME,
        "log_dir": log_dir,
        "log_level": logging.getLevelName(config.level),
        "log_json": config.json,
        "log_request_bodies": config.request_bodies,
        "retention_days": config.retention_days,
        "rotate_utc": config.rotate_utc,
        "files": {
            "relay": os.path.join(log_dir, "relay.log"),
            "access": os.path.join(log_dir, "access.log"),
        },
    }


def main() -> None:
    sys.stdout.write(json.dumps(get_log_config(), indent=2) + "\n")


if __name__ == "__main__":
    main()
