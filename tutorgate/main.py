import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from tutorgate.api import chat, health, metrics, premium
from tutorgate.core.clock import Clock, utc_now
from tutorgate.core.config import Settings, settings, validate_config
from tutorgate.core.database import create_all_tables, get_database_url, get_session_factory, init_engine
from tutorgate.core.errors import AppError, app_error_handler, http_error_handler, unhandled_exception_handler
from tutorgate.core.logging import configure_logging
from tutorgate.core.middleware.request_id import RequestIdMiddleware
from tutorgate.core.ratelimit import RateLimitConfig, SlidingWindowLimiter
from tutorgate.core.tracing import setup_tracing
from tutorgate.features.chat.config import ChatbotConfig, load_chatbot_config
from tutorgate.features.chat.history import ConversationWindowManager
from tutorgate.features.chat.provider import ChatProvider, GroqChatProvider
from tutorgate.features.chat.service import TutorChatService
from tutorgate.features.entitlements.service import TutorGate
from tutorgate.features.promotions.service import PromoCodeService
from tutorgate.features.subscriptions.lifecycle import SubscriptionLifecycleManager
from tutorgate.features.subscriptions.store import SubscriptionStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("tutorgate")
    logger.info("Starting tutorgate...")
    app.state.startup_time = time.time()
    if app.state.engine is not None:
        create_all_tables(app.state.engine)
    try:
        yield
    finally:
        logging.getLogger("tutorgate").info("Stopping tutorgate...")


def create_app(
    settings_obj: Optional[Settings] = None,
    *,
    session_factory: Optional[sessionmaker] = None,
    now_fn: Clock = utc_now,
    time_fn: Callable[[], float] = time.monotonic,
    provider: Optional[ChatProvider] = None,
    chatbot_config: Optional[ChatbotConfig] = None,
) -> FastAPI:
    """
    Build the API with its services on app.state.

    Tests pass a session factory bound to an in-memory database, a fake
    clock and a fake provider; production wiring reads everything from
    settings.
    """
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg)
    setup_tracing(enabled=cfg.OTEL_ENABLED, exporter_name=cfg.OTEL_EXPORTER)

    engine = None
    if session_factory is None and (cfg.DATABASE_URL or get_database_url()):
        engine = init_engine(cfg.DATABASE_URL)
        session_factory = get_session_factory()

    chat_config = chatbot_config or load_chatbot_config(cfg.CHATBOT_CONFIG_PATH)
    if provider is None and cfg.GROQ_API_KEY:
        provider = GroqChatProvider(cfg.GROQ_API_KEY)

    per_minute = cfg.CHAT_RATE_LIMIT_PER_MINUTE or chat_config.rate_limit.max_requests_per_minute
    limiter = SlidingWindowLimiter(
        RateLimitConfig(max_requests=per_minute, window_seconds=float(cfg.RATE_LIMIT_WINDOW_SECONDS)),
        time_fn=time_fn,
    )

    store = SubscriptionStore(session_factory, now_fn=now_fn)
    lifecycle = SubscriptionLifecycleManager(store, now_fn=now_fn)
    history = ConversationWindowManager(max_length=cfg.CHAT_HISTORY_MAX_LENGTH)

    app = FastAPI(title="tutorgate", lifespan=lifespan)
    app.state.settings = cfg
    app.state.engine = engine
    app.state.lifecycle = lifecycle
    app.state.rate_limiter = limiter
    app.state.tutor_gate = TutorGate(lifecycle, limiter, chat_config.required_plan, now_fn=now_fn)
    app.state.chat_service = TutorChatService(chat_config, history, provider)
    app.state.promotions = PromoCodeService(session_factory, now_fn=now_fn)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(premium.router)
    app.include_router(chat.router)
    app.include_router(health.router)
    app.include_router(metrics.router)
    return app


app = create_app()
