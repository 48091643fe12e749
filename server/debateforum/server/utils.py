import json
import logging
import time

from aiohttp import web

from debateforum.core.exceptions import DebateError, RateLimitExceeded
from debateforum.core.rate_limiter import Consumption
from .auth import AuthError

logger = logging.getLogger(__name__)


def get_client_identifier(request: web.Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.remote or "unknown"


def add_rate_limit_headers(response: web.StreamResponse, consumption: Consumption):
    response.headers["X-RateLimit-Limit"] = str(consumption.limit)
    response.headers["X-RateLimit-Remaining"] = str(consumption.remaining_points)
    response.headers["X-RateLimit-Reset"] = consumption.reset_at(time.time())
    return response


def rate_limit_response(error: RateLimitExceeded) -> web.Response:
    exhausted = Consumption(error.limit, error.limit, 0, error.ms_before_next)
    response = web.json_response(
        {
            "error": "Too many requests",
            "message": error.message,
            "retryAfter": error.retry_after,
        },
        status=429,
        headers={"Retry-After": str(error.retry_after)},
    )
    return add_rate_limit_headers(response, exhausted)


def rate_limit(limiter_class: str):
    """Tag a view with the rate limiter class that guards it."""

    def decorator(handler):
        handler.__rate_limit__ = limiter_class
        return handler

    return decorator


@web.middleware
async def rate_limit_middleware(request: web.Request, handler):
    # Look at the route's own view: ``handler`` may be the next middleware.
    limiter_class = getattr(request.match_info.handler, "__rate_limit__", None)
    if limiter_class is None:
        return await handler(request)

    limiter = request.app["rate_limiter"]
    try:
        consumption = limiter.consume(get_client_identifier(request), limiter_class)
    except RateLimitExceeded as e:
        return rate_limit_response(e)

    response = await handler(request)
    return add_rate_limit_headers(response, consumption)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except RateLimitExceeded as e:
        return rate_limit_response(e)
    except AuthError as e:
        return web.json_response(
            {"code": e.error.get("code"), "error": e.error.get("description")},
            status=e.status_code,
        )
    except DebateError as e:
        logger.info(f"{type(e).__name__} on {request.method} {request.path}: {e.message}")
        return web.json_response({"error": e.message}, status=e.status_code)
    except Exception:
        logger.exception(f"Unexpected error on {request.method} {request.path}")
        return web.json_response({"error": "Internal server error"}, status=500)


def handle_validation_error(error, req, schema, error_status_code, error_headers):
    """Answer malformed request bodies with 400 and the field messages."""
    raise web.HTTPBadRequest(
        text=json.dumps({"error": "Invalid input", "details": error.messages}),
        content_type="application/json",
    )
