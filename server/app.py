from aiohttp import web
import aiohttp_cors
import os
import dotenv
import logging
from debateforum.server.routes import setup_routes
from aiohttp_apispec import validation_middleware, setup_aiohttp_apispec
from debateforum.server.auth import auth_middleware, local_tokens_enabled, verify_jwt
from debateforum.server.utils import (
    error_middleware,
    handle_validation_error,
    rate_limit_middleware,
)
from debateforum.core.mailer import EmailService
from debateforum.core.rate_limiter import RateLimiter
from debateforum.database.database import async_session

dotenv.load_dotenv()

SERVER_HOST = os.environ.get("SERVER_HOST", "0.0.0.0")
SERVER_PORT = int(os.environ.get("SERVER_PORT", 8080))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app(
    session_factory=None,
    rate_limiter=None,
    mailer=None,
    verify_token=None,
    cron_secret=None,
) -> web.Application:
    app = web.Application(
        middlewares=[
            error_middleware,
            rate_limit_middleware,
            auth_middleware,
            validation_middleware,
        ]
    )
    app["db_session"] = session_factory or async_session
    app["rate_limiter"] = rate_limiter or RateLimiter()
    app["mailer"] = mailer or EmailService.from_env()
    app["verify_token"] = verify_token or verify_jwt
    app["cron_secret"] = cron_secret or os.environ.get("CRON_SECRET")
    if not app["cron_secret"]:
        logger.warning("CRON_SECRET not set, timeout checks will be rejected.")
    if not local_tokens_enabled():
        logger.warning("JWT_SECRET_KEY not set, email/password sign-in is disabled.")

    setup_routes(app)
    logger.info("Routes have been set up.")

    client_url = os.environ.get("CLIENT_URL")
    if client_url:
        cors = aiohttp_cors.setup(
            app,
            defaults={
                client_url: aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers="*",
                    allow_headers="*",
                    allow_methods="*",
                )
            },
        )
        for route in list(app.router.routes()):
            cors.add(route)
    else:
        logger.warning("CLIENT_URL not set, CORS is disabled.")

    setup_aiohttp_apispec(
        app=app,
        title="Debate Forum API",
        version="v1",
        swagger_path="/api/docs",
        error_callback=handle_validation_error,
    )
    return app


if __name__ == "__main__":
    app_instance = create_app()
    logger.info(f"Starting Debate Forum Backend on http://{SERVER_HOST}:{SERVER_PORT}")
    web.run_app(app_instance, host=SERVER_HOST, port=SERVER_PORT)
