import pytest

from messenger_hub.errors import BackendError
from messenger_hub.routing import (
    AIClassifier,
    DepartmentRouter,
    KeywordClassifier,
    RoutingState,
)
from messenger_hub.routing.ai import GREETING_PROMPT

from conftest import FakeBackend


@pytest.fixture
def make_router(clock):
    def _make(backend=None, **kwargs):
        return DepartmentRouter(
            KeywordClassifier(),
            AIClassifier(backend),
            clock=clock,
            **kwargs,
        )

    return _make


def test_keyword_decision_skips_ai(make_router):
    backend = FakeBackend()
    router = make_router(backend)

    decision = router.route("u1", "Our player is broken and not working")

    assert decision.routed
    assert decision.department == "technical"
    assert decision.source == "keyword"
    assert decision.confidence == 1.0
    assert backend.prompts == []
    assert router.state_of("u1") is RoutingState.ROUTED


def test_keyword_tie_defers_to_ai(make_router):
    backend = FakeBackend(["design"])
    router = make_router(backend)

    decision = router.route("u1", "I need a quote for soundtrack licensing")

    assert decision.department == "design"
    assert decision.source == "ai"
    assert len(backend.prompts) == 1


def test_keywords_win_even_when_ai_disagrees(make_router):
    backend = FakeBackend(["design"])
    router = make_router(backend)

    decision = router.route("u1", "What is the price for 3 locations?")

    assert decision.department == "sales"
    assert backend.prompts == []


def test_greeting_asks_for_clarification(make_router):
    router = make_router(FakeBackend())

    decision = router.route("u1", "Hello!")

    assert not decision.routed
    assert decision.state is RoutingState.AWAITING_CLARIFICATION
    assert decision.clarification == GREETING_PROMPT
    assert decision.reason == "greeting"


def test_clarification_answer_is_routed(make_router):
    router = make_router(FakeBackend(["sales", "hmm"]))
    router.route("u1", "Hi there")

    decision = router.route("u1", "I want to fix my account")

    assert decision.routed
    assert decision.department == "technical"
    assert decision.reason == "clarified"


def test_ai_accepted_at_lower_threshold_after_clarification(make_router):
    # First classification is unparseable (0.2); the clarified one is partial (0.7).
    backend = FakeBackend(["not sure", "Clarify please", "maybe design?"])
    router = make_router(backend)

    first = router.route("u1", "Can someone call me?")
    assert first.state is RoutingState.AWAITING_CLARIFICATION

    second = router.route("u1", "It is about our new store")

    assert second.department == "design"
    assert second.source == "ai"
    assert "Can someone call me?" in backend.prompts[-1]


def test_forced_default_after_max_attempts(make_router):
    router = make_router(None, max_clarification_attempts=3, default_department="sales")

    decisions = [router.route("u1", text) for text in ["hmm", "ok", "well", "so"]]

    assert [d.routed for d in decisions] == [False, False, False, True]
    forced = decisions[-1]
    assert forced.department == "sales"
    assert forced.confidence == 0.3
    assert forced.source == "default"
    assert forced.reason == "max_clarification_attempts"


def test_routed_is_terminal(make_router):
    backend = FakeBackend()
    router = make_router(backend)
    router.route("u1", "I need a quotation")

    follow_up = router.route("u1", "Also my player is broken")

    assert follow_up.department == "sales"
    assert follow_up.follow_up is True
    assert backend.prompts == []


def test_backend_failure_leads_to_clarification(make_router):
    router = make_router(FakeBackend([BackendError("down"), BackendError("down")]))

    decision = router.route("u1", "Can someone call me?")

    assert decision.state is RoutingState.AWAITING_CLARIFICATION
    assert decision.source == "error"
    assert decision.clarification


def test_sessions_expire_after_idle_timeout(make_router, clock):
    router = make_router(None)
    router.route("u1", "Hello")
    assert router.state_of("u1") is RoutingState.AWAITING_CLARIFICATION

    clock.advance(minutes=16)

    assert router.state_of("u1") is RoutingState.NEW
    router.route("u2", "Hello")
    clock.advance(minutes=16)
    assert router.clear_expired() == 1


def test_assign_and_stats(make_router):
    router = make_router(None)
    decision = router.assign("u1", reason="escalated")
    router.route("u2", "Hello")

    assert decision.department == "sales"
    assert router.state_of("u1") is RoutingState.ROUTED
    stats = router.stats()
    assert stats["sessions"] == 2
    assert stats["by_state"]["awaiting_clarification"] == 1
    assert decision.as_dict()["reason"] == "escalated"
