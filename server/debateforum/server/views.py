from aiohttp import web
import hmac
import logging

from debateforum.core import accounts, lifecycle, notifications, votes
from debateforum.core.creation import create_debate
from debateforum.core.definitions import (
    accept_definition,
    propose_definition,
    supersede_definition,
)
from debateforum.core.exceptions import NotFoundError
from debateforum.database.database import get_item_by_id
from debateforum.database.models import Debate, Definition, ParticipantRole, utcnow
from .auth import create_access_token, require_local_tokens
from .utils import rate_limit

from .schemas import (
    CreateDebateRequest,
    DebateSchema,
    DefinitionInput,
    DefinitionSchema,
    ErrorResponse,
    ForgotPasswordRequest,
    JoinDebateRequest,
    JoinDebateResponse,
    LoginRequest,
    MarkAllReadResponse,
    MessageResponse,
    NotificationListResponse,
    NotificationSchema,
    ResetPasswordRequest,
    SignupRequest,
    SubmitTurnRequest,
    SubmitTurnResponse,
    SupersedeResponse,
    TimeoutCheckResponse,
    TokenResponse,
    UnreadCountResponse,
    VoteRequest,
    VoteResponse,
)
from aiohttp_apispec import (
    docs,
    request_schema,
)

logger = logging.getLogger(__name__)

DEBATE_RELATIONSHIPS = [
    "topics",
    "participants",
    "arguments.references",
    "definitions.references",
    "win_condition",
]

FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, we have sent a password reset link."
)


def _path_id(request, name="id") -> int:
    try:
        return int(request.match_info[name])
    except ValueError:
        raise NotFoundError("Not found")


async def _load_debate(request, debate_id: int) -> Debate:
    async with request.app["db_session"]() as session:
        debate = await get_item_by_id(
            session, debate_id, Debate, load_relationships=DEBATE_RELATIONSHIPS
        )
    if debate is None:
        raise NotFoundError("Debate not found")
    return debate


# --- Debates ---


@docs(
    tags=["debates"],
    summary="Creates a debate",
    description="Creates a debate with its topics, the creator as proposer, opening arguments and initial definitions.",
    responses={
        201: {"schema": DebateSchema, "description": "The created debate"},
        400: {"schema": ErrorResponse, "description": "Invalid debate"},
        401: {"description": "Unauthorized"},
        429: {"description": "Too many requests"},
    },
)
@request_schema(CreateDebateRequest)
@rate_limit("api")
async def create_debate_view(request):
    async with request.app["db_session"]() as session:
        debate = await create_debate(session, request["user_id"], request["data"])
    debate = await _load_debate(request, debate.id)
    return web.json_response(DebateSchema().dump(debate), status=201)


@docs(
    tags=["debates"],
    summary="Retrieves a debate by ID",
    description="Retrieves a debate with its participants, arguments, definitions and progress.",
    responses={
        200: {"schema": DebateSchema, "description": "Success response"},
        404: {"schema": ErrorResponse, "description": "Debate not found"},
    },
)
async def get_debate_view(request):
    debate = await _load_debate(request, _path_id(request))
    return web.json_response(DebateSchema().dump(debate))


@docs(
    tags=["debates"],
    summary="Joins an open debate",
    description="Joins an open debate on the given side. The debate starts once it is full.",
    responses={
        200: {"schema": JoinDebateResponse, "description": "Joined"},
        400: {"schema": ErrorResponse, "description": "Cannot join"},
        404: {"schema": ErrorResponse, "description": "Debate not found"},
    },
)
@request_schema(JoinDebateRequest)
@rate_limit("api")
async def join_debate_view(request):
    role = ParticipantRole(request["data"]["role"])
    async with request.app["db_session"]() as session:
        participant, debate = await lifecycle.join_debate(
            session, _path_id(request), request["user_id"], role
        )
    return web.json_response(
        JoinDebateResponse().dump(
            {"participant_id": participant.id, "debate_status": debate.status}
        )
    )


@docs(
    tags=["debates"],
    summary="Submits arguments for the current turn",
    description="Records the caller's arguments for the current turn and passes the turn on.",
    responses={
        201: {"schema": SubmitTurnResponse, "description": "Arguments recorded"},
        400: {"schema": ErrorResponse, "description": "Not allowed or invalid"},
        404: {"schema": ErrorResponse, "description": "Debate not found"},
    },
)
@request_schema(SubmitTurnRequest)
@rate_limit("api")
async def submit_turn_view(request):
    debate_id = _path_id(request)
    async with request.app["db_session"]() as session:
        _, created = await lifecycle.submit_turn(
            session,
            debate_id,
            request["user_id"],
            request["data"]["arguments"],
            forfeit=request["data"]["forfeit"],
        )
    debate = await _load_debate(request, debate_id)
    created_ids = {argument.id for argument in created}
    response_data = SubmitTurnResponse().dump(
        {
            "debate": debate,
            "arguments": [a for a in debate.arguments if a.id in created_ids],
        }
    )
    return web.json_response(response_data, status=201)


# --- Definitions ---


@docs(
    tags=["definitions"],
    summary="Proposes a definition",
    description="Proposes a definition for a term in an ongoing debate.",
    responses={
        201: {"schema": DefinitionSchema, "description": "Definition proposed"},
        400: {"schema": ErrorResponse, "description": "Invalid definition"},
        404: {"schema": ErrorResponse, "description": "Debate not found"},
    },
)
@request_schema(DefinitionInput)
@rate_limit("api")
async def propose_definition_view(request):
    async with request.app["db_session"]() as session:
        definition = await propose_definition(
            session, _path_id(request), request["user_id"], request["data"]
        )
    return web.json_response(
        DefinitionSchema().dump(await _load_definition(request, definition.id)),
        status=201,
    )


async def _load_definition(request, definition_id: int) -> Definition:
    async with request.app["db_session"]() as session:
        return await get_item_by_id(
            session, definition_id, Definition, load_relationships=["references"]
        )


@docs(
    tags=["definitions"],
    summary="Accepts a definition",
    responses={
        200: {"schema": DefinitionSchema, "description": "Definition accepted"},
        400: {"schema": ErrorResponse, "description": "Not a participant"},
        404: {"schema": ErrorResponse, "description": "Definition not found"},
    },
)
@rate_limit("api")
async def accept_definition_view(request):
    async with request.app["db_session"]() as session:
        definition = await accept_definition(
            session, _path_id(request), request["user_id"]
        )
    return web.json_response(
        DefinitionSchema().dump(await _load_definition(request, definition.id))
    )


@docs(
    tags=["definitions"],
    summary="Supersedes a definition",
    description="Proposes a revised definition that replaces the given one.",
    responses={
        201: {"schema": SupersedeResponse, "description": "Definition superseded"},
        400: {"schema": ErrorResponse, "description": "Not allowed or invalid"},
        404: {"schema": ErrorResponse, "description": "Definition not found"},
    },
)
@request_schema(DefinitionInput)
@rate_limit("api")
async def supersede_definition_view(request):
    async with request.app["db_session"]() as session:
        original, replacement = await supersede_definition(
            session, _path_id(request), request["user_id"], request["data"]
        )
    response_data = SupersedeResponse().dump(
        {
            "original": await _load_definition(request, original.id),
            "definition": await _load_definition(request, replacement.id),
        }
    )
    return web.json_response(response_data, status=201)


# --- Votes ---


@docs(
    tags=["votes"],
    summary="Votes on an argument or definition",
    description="Casting the same vote again removes it; the opposite vote flips it.",
    responses={
        200: {"schema": VoteResponse, "description": "Vote applied"},
        400: {"schema": ErrorResponse, "description": "Invalid input"},
        404: {"schema": ErrorResponse, "description": "Target not found"},
    },
)
@request_schema(VoteRequest)
@rate_limit("api")
async def vote_view(request):
    data = request["data"]
    async with request.app["db_session"]() as session:
        result = await votes.vote(
            session,
            data["target_id"],
            request.match_info["kind"],
            data["support"],
            request["user_id"],
        )
    return web.json_response(
        VoteResponse().dump({"success": result.success, "vote": result.vote})
    )


# --- Notifications ---


@docs(
    tags=["notifications"],
    summary="Lists the caller's notifications",
    responses={200: {"schema": NotificationListResponse, "description": "Newest first"}},
)
async def list_notifications_view(request):
    async with request.app["db_session"]() as session:
        listed = await notifications.list_notifications(session, request["user_id"])
    return web.json_response(
        NotificationListResponse().dump({"notifications": listed})
    )


@docs(
    tags=["notifications"],
    summary="Counts the caller's unread notifications",
    responses={200: {"schema": UnreadCountResponse, "description": "Unread count"}},
)
async def unread_count_view(request):
    async with request.app["db_session"]() as session:
        count = await notifications.unread_count(session, request["user_id"])
    return web.json_response(UnreadCountResponse().dump({"count": count}))


@docs(
    tags=["notifications"],
    summary="Marks a notification as read",
    responses={
        200: {"schema": NotificationSchema, "description": "Notification read"},
        404: {"schema": ErrorResponse, "description": "Notification not found"},
    },
)
@rate_limit("api")
async def mark_notification_read_view(request):
    async with request.app["db_session"]() as session:
        notification = await notifications.mark_as_read(
            session, _path_id(request), request["user_id"]
        )
    return web.json_response(NotificationSchema().dump(notification))


@docs(
    tags=["notifications"],
    summary="Marks all of the caller's notifications as read",
    responses={200: {"schema": MarkAllReadResponse, "description": "Rows updated"}},
)
@rate_limit("api")
async def mark_all_notifications_read_view(request):
    async with request.app["db_session"]() as session:
        updated = await notifications.mark_all_as_read(session, request["user_id"])
    return web.json_response(MarkAllReadResponse().dump({"updated": updated}))


@docs(
    tags=["notifications"],
    summary="Deletes a notification",
    responses={
        204: {"description": "Deleted"},
        404: {"schema": ErrorResponse, "description": "Notification not found"},
    },
)
@rate_limit("api")
async def delete_notification_view(request):
    async with request.app["db_session"]() as session:
        await notifications.delete_notification(
            session, _path_id(request), request["user_id"]
        )
    return web.Response(status=204)


# --- Cron ---


@docs(
    tags=["cron"],
    summary="Forfeits participants who missed the turn time limit",
    description="Requires 'Authorization: Bearer <CRON_SECRET>'.",
    responses={
        200: {"schema": TimeoutCheckResponse, "description": "Sweep finished"},
        401: {"schema": ErrorResponse, "description": "Unauthorized"},
    },
)
async def check_timeouts_view(request):
    cron_secret = request.app["cron_secret"]
    auth_header = request.headers.get("Authorization", "")
    if not cron_secret or not hmac.compare_digest(
        auth_header.encode("utf-8"), f"Bearer {cron_secret}".encode("utf-8")
    ):
        logger.warning("Rejected timeout check with a missing or wrong cron secret")
        return web.json_response({"error": "Unauthorized"}, status=401)

    async with request.app["db_session"]() as session:
        completed = await lifecycle.sweep_timeouts(session)
    response_data = TimeoutCheckResponse().dump(
        {
            "success": True,
            "message": "Debate timeouts checked successfully",
            "completed_debates": completed,
            "timestamp": utcnow(),
        }
    )
    return web.json_response(response_data)


# --- Accounts ---


@docs(
    tags=["auth"],
    summary="Registers an email/password account",
    responses={
        201: {"schema": TokenResponse, "description": "Account created"},
        400: {"schema": ErrorResponse, "description": "Invalid input or email taken"},
        429: {"description": "Too many requests"},
    },
)
@request_schema(SignupRequest)
@rate_limit("registration")
async def signup_view(request):
    require_local_tokens()
    data = request["data"]
    async with request.app["db_session"]() as session:
        user = await accounts.signup(
            session, data["name"], data["email"], data["password"]
        )
    await request.app["mailer"].send_welcome_email(user.email, user.name)
    response_data = TokenResponse().dump(
        {
            "access_token": create_access_token(user),
            "token_type": "bearer",
            "user_id": user.id,
        }
    )
    return web.json_response(response_data, status=201)


@docs(
    tags=["auth"],
    summary="Logs in with email and password",
    responses={
        200: {"schema": TokenResponse, "description": "Access token"},
        401: {"schema": ErrorResponse, "description": "Invalid credentials"},
        429: {"description": "Too many requests"},
    },
)
@request_schema(LoginRequest)
@rate_limit("auth")
async def login_view(request):
    require_local_tokens()
    data = request["data"]
    async with request.app["db_session"]() as session:
        user = await accounts.authenticate(session, data["email"], data["password"])
    logger.info(f"User {user.id} logged in")
    response_data = TokenResponse().dump(
        {
            "access_token": create_access_token(user),
            "token_type": "bearer",
            "user_id": user.id,
        }
    )
    return web.json_response(response_data)


@docs(
    tags=["auth"],
    summary="Sends a password reset link",
    description="Answers the same way whether or not the email is registered.",
    responses={
        200: {"schema": MessageResponse, "description": "Request accepted"},
        429: {"description": "Too many requests"},
    },
)
@request_schema(ForgotPasswordRequest)
@rate_limit("passwordReset")
async def forgot_password_view(request):
    mailer = request.app["mailer"]
    email = request["data"]["email"].strip().lower()
    # Caps reset mail per address on top of the per-client limit.
    request.app["rate_limiter"].consume(email, "email")
    async with request.app["db_session"]() as session:
        issued = await accounts.request_password_reset(session, email)
    if issued is not None:
        user, token = issued
        await mailer.send_password_reset_email(
            user.email, mailer.reset_url(token), user.name
        )
    return web.json_response(MessageResponse().dump({"message": FORGOT_PASSWORD_MESSAGE}))


@docs(
    tags=["auth"],
    summary="Sets a new password with a reset token",
    responses={
        200: {"schema": MessageResponse, "description": "Password updated"},
        400: {"schema": ErrorResponse, "description": "Invalid or expired token"},
        429: {"description": "Too many requests"},
    },
)
@request_schema(ResetPasswordRequest)
@rate_limit("auth")
async def reset_password_view(request):
    data = request["data"]
    async with request.app["db_session"]() as session:
        await accounts.reset_password(session, data["token"], data["password"])
    return web.json_response(
        MessageResponse().dump({"message": "Password has been reset successfully"})
    )
