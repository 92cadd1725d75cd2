from contextlib import asynccontextmanager
from fastapi import FastAPI
from redis import asyncio as aioredis
from marketplace.api import cur_version, version_prefix
from marketplace.api.routers import admin_routers, public_routers, rider_routers, seller_routers
from marketplace.common.custom_exceptions import register_all_exceptions
from marketplace.common.logging_setup import get_logger, setup_logging, shutdown_logging
from marketplace.config.admin_config import admin_config
from marketplace.config.settings import config_settings
from marketplace.db.connection import build_engine, build_session_factory
from marketplace.metrics import instrumentator
from marketplace.middlewares.auth_middleware import AuthenticationMiddleware
from marketplace.middlewares.request_id_middleware import RequestIdMiddleware
from marketplace.payments.client import PaystackClient
from marketplace.places.client import PlacesClient
from marketplace.rate_limiting.limiter import FixedWindowLimiter

logger = get_logger("marketplace.app")

# stale bearer tokens must not block the endpoints that issue new ones
AUTH_SKIP_PATHS = [
    f"{version_prefix}/webhooks",
    f"{version_prefix}/auth/login",
    f"{version_prefix}/auth/signup",
    f"{version_prefix}/auth/forgot-password",
    f"{version_prefix}/auth/reset-password",
    f"{version_prefix}/auth/verify-email",
    "/docs",
    "/openapi.json",
    "/metrics",
]


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()

    engine = build_engine()
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)

    # a dead redis only degrades the limiter to per-process counters
    redis_client = aioredis.from_url(config_settings.REDIS_URL, decode_responses=True)
    app.state.redis = redis_client
    app.state.rate_limiter = FixedWindowLimiter(redis_client)

    app.state.paystack = PaystackClient.from_settings()
    app.state.places = PlacesClient.from_settings()
    logger.info("app.startup", extra={"env": admin_config.ENV, "paystack_configured": app.state.paystack.configured,
                                      "places_configured": app.state.places.configured})

    try:
        yield
    finally:
        await app.state.paystack.aclose()
        await app.state.places.aclose()
        await redis_client.aclose()
        await engine.dispose()
        logger.info("app.shutdown")
        shutdown_logging()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Marketplace",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)
    app.include_router(seller_routers)
    app.include_router(rider_routers)
    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    @app.get(f"{version_prefix}/health", tags=["home"])
    async def health():
        return {"status": "ok", "service": admin_config.SERVICE_NAME}

    app.add_middleware(AuthenticationMiddleware, skip_paths=AUTH_SKIP_PATHS)
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    if config_settings.METRICS_ENABLED:
        instrumentator.instrument(app).expose(app, endpoint="/metrics")

    return app


app = create_app()
