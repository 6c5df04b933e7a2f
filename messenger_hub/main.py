"""FastAPI application wiring for Messenger Hub.

This module bootstraps the HTTP surface around the relay core:

- Configures logging, Prometheus metrics and rate limiting.
- Mounts the channel webhooks, the Hub event webhook, the reply portal and
  the escalation endpoints.
- Starts the background sweeper (and the Hub poller when a Hub API token is
  configured) for the lifetime of the app.
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .conversations.service import create_relay_service
from .hub import HubPoller
from .rate_limit import limiter
from .routers import hub, webhooks
from .settings import get_settings
from .sweeper import Sweeper

load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    relay = app.state.relay
    sweeper = Sweeper(relay.sweep, settings.sweep_interval_seconds)
    sweeper.start()
    poller = None
    if settings.hub_api_token and settings.hub_poll_interval_seconds > 0:
        poller = HubPoller(
            relay.hub,
            relay.handle_reply,
            settings.hub_spaces.values(),
            interval=settings.hub_poll_interval_seconds,
        )
        poller.start()
    app.state.sweeper = sweeper
    app.state.poller = poller
    try:
        yield
    finally:
        if poller is not None:
            poller.stop()
        sweeper.stop()


settings = get_settings()

app = FastAPI(title="Messenger Hub", version=__version__, lifespan=lifespan)
init_logging(app)
app.state.settings = settings
app.state.relay = create_relay_service(settings)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.include_router(webhooks.router)
app.include_router(hub.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness check with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }


@app.get("/api/stats")
def stats(request: Request):
    """Relay counters: conversations, cache, escalations, customers, routing."""
    return request.app.state.relay.get_stats()
