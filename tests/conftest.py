import pathlib
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from messenger_hub.app_logging import init_logging
from messenger_hub.channels.senders import DeliveryResult
from messenger_hub.conversations.escalation import EscalationStore
from messenger_hub.conversations.history import MessageHistoryStore
from messenger_hub.conversations.service import RelayService
from messenger_hub.conversations.store import ConversationStore
from messenger_hub.customers import CustomerInfoGatherer, CustomerInfoParser
from messenger_hub.errors import BackendError
from messenger_hub.hub import InMemoryHubClient
from messenger_hub.routing import AIClassifier, DepartmentRouter, KeywordClassifier
from messenger_hub.translation import LanguageDetector, TranslationCache, TranslationService

SPACES = {
    "technical": "spaces/technical",
    "sales": "spaces/sales",
    "design": "spaces/design",
}


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeBackend:
    """Text-generation backend that replays queued replies or a responder."""

    def __init__(
        self,
        replies: list[str | Exception] | None = None,
        responder: Callable[[str], str] | None = None,
    ) -> None:
        self.replies = list(replies or [])
        self.responder = responder
        self.prompts: list[str] = []

    def generate(self, prompt: str, *, max_output_tokens: int = 256) -> str:
        self.prompts.append(prompt)
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        if self.responder is not None:
            return self.responder(prompt)
        raise BackendError("no reply queued")


@dataclass
class FakeSender:
    channel_name: str
    fail_with: DeliveryResult | None = None
    sent: list[tuple[str, str]] = field(default_factory=list)

    def send(self, identifier: str, text: str) -> DeliveryResult:
        self.sent.append((identifier, text))
        if self.fail_with is not None:
            return self.fail_with
        return DeliveryResult(True, status_code=200, message_id=f"wamid.{len(self.sent)}", attempts=1)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def hub(clock) -> InMemoryHubClient:
    return InMemoryHubClient(clock=clock)


@pytest.fixture
def senders() -> dict[str, FakeSender]:
    return {"whatsapp": FakeSender("whatsapp"), "line": FakeSender("line")}


@pytest.fixture
def relay_factory(clock, hub, senders):
    def _create(
        backend: FakeBackend | None = None,
        *,
        gathering: bool = True,
        escalation_timeout: timedelta | None = timedelta(minutes=10),
    ) -> RelayService:
        keywords = KeywordClassifier()
        router = DepartmentRouter(
            keywords,
            AIClassifier(backend, departments=keywords.departments),
            clock=clock,
        )
        translator = TranslationService(
            backend,
            cache=TranslationCache(clock=clock),
            detector=LanguageDetector(None),
            sleep=lambda _: None,
        )
        return RelayService(
            hub=hub,
            senders=senders,
            translator=translator,
            router=router,
            gatherer=CustomerInfoGatherer(
                CustomerInfoParser(None), enabled=gathering, clock=clock
            ),
            conversations=ConversationStore(clock=clock),
            escalations=EscalationStore(timeout=escalation_timeout, clock=clock),
            history=MessageHistoryStore(clock=clock),
            spaces=SPACES,
            display_timezone="UTC",
            clock=clock,
        )

    return _create


@pytest.fixture
def relay(relay_factory) -> RelayService:
    """Relay without AI and with info gathering switched off."""

    return relay_factory(gathering=False)


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
