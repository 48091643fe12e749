# debateforum/server/auth.py
import jwt
import aiohttp
import json
import os
from datetime import timedelta
from aiohttp import web
from jose import jwt as jose_jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError
import logging
import re  # For path matching
from debateforum.core.accounts import LOCAL_AUTH_PREFIX
from debateforum.database.database import get_first_by_filters, create_item
from debateforum.database.models import User, utcnow


logger = logging.getLogger(__name__)

AUTH0_DOMAIN = os.environ.get("AUTH0_DOMAIN")
API_AUDIENCE = os.environ.get("AUTH0_API_AUDIENCE")
ALGORITHMS = ["RS256"]

# Locally issued tokens for email/password accounts. Unset disables them.
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = int(os.environ.get("JWT_EXPIRE_HOURS", "168"))

PUBLIC_PATHS = [
    re.compile(r"^/api/docs(/.*)?$"),
    re.compile(r"^/static(/.*)?$"),
    re.compile(r"^/auth/.*$"),
    # Protected by the shared cron secret instead of a user token.
    re.compile(r"^/cron/.*$"),
]

jwks_cache = None


async def get_jwks():
    global jwks_cache
    if jwks_cache:
        return jwks_cache

    if not AUTH0_DOMAIN:
        logger.error("AUTH0_DOMAIN not set for JWKS fetching.")
        raise web.HTTPInternalServerError(
            text=json.dumps({"error": "Auth configuration error (domain)."}),
            content_type="application/json",
        )

    jwks_url = f"https://{AUTH0_DOMAIN}/.well-known/jwks.json"
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(jwks_url) as resp:
                resp.raise_for_status()
                jwks_data = await resp.json()
                jwks_cache = jwks_data
                logger.info("JWKS fetched and cached successfully.")
                return jwks_data
    except aiohttp.ClientError as e:
        logger.error(f"Failed to fetch JWKS: {e}")
        raise web.HTTPInternalServerError(
            text=json.dumps({"error": f"Could not fetch JWKS: {e}"}),
            content_type="application/json",
        )


class AuthError(Exception):
    def __init__(self, error, status_code):
        self.error = error
        self.status_code = status_code


def local_tokens_enabled() -> bool:
    return bool(JWT_SECRET_KEY)


def require_local_tokens():
    if not local_tokens_enabled():
        logger.error("JWT_SECRET_KEY not set, email/password accounts are disabled.")
        raise AuthError(
            {
                "code": "config_error",
                "description": "Email/password sign-in is not configured.",
            },
            503,
        )


def create_access_token(user: User) -> str:
    require_local_tokens()
    now = utcnow()
    payload = {
        "sub": user.auth_id,
        "name": user.name,
        "iat": now,
        "exp": now + timedelta(hours=JWT_EXPIRE_HOURS),
    }
    return jose_jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def _decode_local(token: str) -> dict:
    if not local_tokens_enabled():
        logger.warning("Rejected a local token: JWT_SECRET_KEY is not set.")
        raise AuthError(
            {
                "code": "invalid_token",
                "description": "Unable to validate authentication token.",
            },
            401,
        )
    try:
        payload = jose_jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        logger.warning("Token is expired.")
        raise AuthError(
            {"code": "token_expired", "description": "Token is expired."}, 401
        )
    except JWTError as e:
        logger.warning(f"Invalid local token: {e}")
        raise AuthError(
            {
                "code": "invalid_token",
                "description": "Unable to validate authentication token.",
            },
            401,
        )

    # The shared secret only vouches for accounts created by signup.
    if not str(payload.get("sub", "")).startswith(LOCAL_AUTH_PREFIX):
        logger.warning(f"Local token carries a non-local subject: {payload.get('sub')}")
        raise AuthError(
            {
                "code": "invalid_token",
                "description": "Unable to validate authentication token.",
            },
            401,
        )
    return payload


async def _decode_auth0(token: str, unverified_header: dict) -> dict:
    if not AUTH0_DOMAIN or not API_AUDIENCE:
        logger.error("Auth0 domain or API audience not configured on backend.")
        raise AuthError(
            {
                "code": "config_error",
                "description": "Authentication service not configured.",
            },
            500,
        )

    jwks = await get_jwks()
    rsa_key = {}
    for key in jwks["keys"]:
        if key["kid"] == unverified_header.get("kid"):
            rsa_key = {
                "kty": key["kty"],
                "kid": key["kid"],
                "use": key["use"],
                "n": key["n"],
                "e": key["e"],
            }
            break  # Found the key

    if not rsa_key:
        logger.warning("RSA key not found in JWKS for the given KID.")
        raise AuthError(
            {"code": "invalid_header", "description": "Unable to find appropriate key"},
            401,
        )

    try:
        return jose_jwt.decode(
            token,
            rsa_key,
            algorithms=ALGORITHMS,
            audience=API_AUDIENCE,
            issuer=f"https://{AUTH0_DOMAIN}/",
        )
    except ExpiredSignatureError:
        logger.warning("Token is expired.")
        raise AuthError(
            {"code": "token_expired", "description": "Token is expired."}, 401
        )
    except JWTClaimsError as e:
        logger.warning(f"Invalid claims, expected audience {API_AUDIENCE}: {e}")
        raise AuthError(
            {"code": "invalid_claims", "description": "Incorrect audience or issuer."},
            401,
        )
    except JWTError as e:
        logger.error(f"Error decoding/validating token with jose: {type(e).__name__} - {e}")
        raise AuthError(
            {
                "code": "invalid_token",
                "description": "Unable to validate authentication token.",
            },
            401,
        )


async def verify_jwt(token: str) -> dict:
    try:
        unverified_header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as e:
        logger.warning(f"JWT Error (unverified header): {e}")
        raise AuthError(
            {
                "code": "invalid_header",
                "description": "Unable to parse authentication token.",
            },
            401,
        )

    if unverified_header.get("alg") == JWT_ALGORITHM:
        return _decode_local(token)
    return await _decode_auth0(token, unverified_header)


async def resolve_user(session_factory, auth_id: str) -> User:
    """Find the user for a token subject, creating one for new Auth0 logins."""
    async with session_factory() as session:
        user = await get_first_by_filters(session, User, auth_id=auth_id)
        if user is None:
            if auth_id.startswith(LOCAL_AUTH_PREFIX):
                # Local accounts are only created by signup.
                raise AuthError(
                    {"code": "invalid_token", "description": "Unknown account."}, 401
                )
            user = await create_item(session, {"auth_id": auth_id}, User)
            logger.info(f"Created user {user.id} for {auth_id}")
    return user


@web.middleware
async def auth_middleware(request: web.Request, handler):
    # Allow OPTIONS requests to pass through for CORS preflight
    if request.method in ("OPTIONS", "HEAD"):
        return await handler(request)

    for pattern in PUBLIC_PATHS:
        if pattern.match(request.path):
            logger.debug(f"Public path, skipping auth: {request.path}")
            return await handler(request)

    logger.debug(f"Protected path, requiring auth: {request.path}")
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        logger.warning(f"Authorization header missing for {request.path}")
        return web.json_response(
            {
                "code": "authorization_header_missing",
                "error": "Authorization header is expected.",
            },
            status=401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning(f"Invalid Authorization header format for {request.path}")
        return web.json_response(
            {
                "code": "invalid_header",
                "error": "Authorization header must be 'Bearer token'.",
            },
            status=401,
        )

    try:
        payload = await request.app["verify_token"](parts[1])
        auth_id = payload.get("sub")
        if not auth_id:
            logger.warning(f"Token payload missing 'sub' for {request.path}")
            return web.json_response(
                {"code": "invalid_token", "error": "Token payload is missing 'sub'."},
                status=401,
            )
        user = await resolve_user(request.app["db_session"], auth_id)
    except AuthError as e:
        logger.warning(
            f"AuthError for {request.path}: Code: {e.error.get('code')}, Desc: {e.error.get('description')}"
        )
        return web.json_response(
            {"code": e.error.get("code"), "error": e.error.get("description")},
            status=e.status_code,
        )

    request["user"] = payload
    request["user_id"] = user.id
    logger.debug(f"User {auth_id} authenticated for {request.path}")
    return await handler(request)
