# tutorgate/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from tutorgate.core.config import Settings
from tutorgate.core.database import build_engine, create_all_tables, drop_all_tables, make_session_factory
from tutorgate.core.metrics import METRICS
from tutorgate.features.chat.config import ChatbotConfig, QuickActionConfig
from tutorgate.features.subscriptions.lifecycle import SubscriptionLifecycleManager
from tutorgate.features.subscriptions.store import SubscriptionStore
from tutorgate.tests.mocks import FakeChatProvider


START = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Wall clock and monotonic clock driven by the same manual time."""

    def __init__(self, start: datetime = START):
        self.current = start
        self._origin = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)

    def monotonic(self) -> float:
        return (self.current - self._origin).total_seconds()


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    create_all_tables(eng)
    yield eng
    drop_all_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory, clock):
    return SubscriptionStore(session_factory, now_fn=clock)


@pytest.fixture
def lifecycle(store, clock):
    return SubscriptionLifecycleManager(store, now_fn=clock)


@pytest.fixture
def fake_provider():
    return FakeChatProvider()


@pytest.fixture
def chatbot_config():
    return ChatbotConfig(
        name="EduBot",
        system_prompt="You are an English tutor.",
        blocked_keywords=["casino"],
        quick_actions={
            "explain_grammar": QuickActionConfig(label="Explain grammar", icon="book"),
            "idiom": QuickActionConfig(label="Idiom", icon="quote", prompt="Explain the idiom {input} simply."),
        },
        welcome_message="Hi! Ask me anything about English.",
    )


@pytest.fixture
def test_settings():
    return Settings(
        ENV="test",
        DATABASE_URL="sqlite://",
        GROQ_API_KEY="test-groq-key",
        JWT_SECRET="test-jwt-secret",
        ALLOW_HEADER_AUTH=True,
        CHAT_RATE_LIMIT_PER_MINUTE=None,
        RATE_LIMIT_WINDOW_SECONDS=60,
        OTEL_ENABLED=False,
    )


@pytest.fixture
def app(test_settings, session_factory, clock, fake_provider, chatbot_config, engine):
    from tutorgate.main import create_app

    application = create_app(
        test_settings,
        session_factory=session_factory,
        now_fn=clock,
        time_fn=clock.monotonic,
        provider=fake_provider,
        chatbot_config=chatbot_config,
    )
    application.state.engine = engine
    return application


@pytest.fixture
def client(app):
    return TestClient(app)
