from marshmallow import EXCLUDE, Schema, fields, validate

from debateforum.core.lifecycle import compute_progress
from debateforum.database.models import (
    DebateFormat,
    DebateStatus,
    DefinitionStatus,
    NotificationType,
    ParticipantRole,
    ParticipantStatus,
    ReferenceType,
    WinConditionType,
)


class RequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE


# --- Requests ---


class ReferenceInput(RequestSchema):
    title = fields.String(required=True, validate=validate.Length(min=1))
    url = fields.String(load_default=None, allow_none=True)
    author = fields.String(load_default=None, allow_none=True)
    publication = fields.String(load_default=None, allow_none=True)
    published_at = fields.DateTime(load_default=None, allow_none=True)
    notes = fields.String(load_default=None, allow_none=True)


class ArgumentInput(RequestSchema):
    content = fields.String(required=True)
    references = fields.List(fields.Nested(ReferenceInput), load_default=list)
    response_to_id = fields.Integer(load_default=None, allow_none=True)
    rebuttal_to_id = fields.Integer(load_default=None, allow_none=True)


class DefinitionInput(RequestSchema):
    term = fields.String(required=True)
    definition = fields.String(required=True)
    context = fields.String(load_default=None, allow_none=True)
    references = fields.List(fields.Nested(ReferenceInput), load_default=list)


class CreateDebateRequest(RequestSchema):
    title = fields.String(required=True)
    description = fields.String(load_default=None, allow_none=True)
    topics = fields.List(fields.String(), required=True)
    format = fields.String(
        load_default=DebateFormat.ONE_VS_ONE.value,
        validate=validate.OneOf([f.value for f in DebateFormat]),
    )
    max_participants = fields.Integer(load_default=2, validate=validate.Range(min=2))
    turns_per_side = fields.Integer(load_default=3, validate=validate.Range(min=1))
    turn_time_limit = fields.Integer(
        load_default=None, allow_none=True, validate=validate.Range(min=1)
    )
    min_references = fields.Integer(load_default=1, validate=validate.Range(min=0))
    status = fields.String(
        load_default=DebateStatus.OPEN.value,
        validate=validate.OneOf([DebateStatus.DRAFT.value, DebateStatus.OPEN.value]),
    )
    initial_arguments = fields.List(fields.Nested(ArgumentInput), required=True)
    initial_definitions = fields.List(fields.Nested(DefinitionInput), load_default=list)


class JoinDebateRequest(RequestSchema):
    role = fields.String(
        required=True,
        validate=validate.OneOf(
            [ParticipantRole.PROPOSER.value, ParticipantRole.OPPOSER.value]
        ),
    )


class SubmitTurnRequest(RequestSchema):
    arguments = fields.List(fields.Nested(ArgumentInput), required=True)
    forfeit = fields.Boolean(load_default=False)


class VoteRequest(RequestSchema):
    target_id = fields.Integer(required=True)
    support = fields.Boolean(required=True, truthy={True}, falsy={False})


class SignupRequest(RequestSchema):
    name = fields.String(required=True, validate=validate.Length(min=2))
    email = fields.Email(required=True)
    password = fields.String(required=True, validate=validate.Length(min=8))


class LoginRequest(RequestSchema):
    email = fields.Email(required=True)
    password = fields.String(required=True)


class ForgotPasswordRequest(RequestSchema):
    email = fields.Email(required=True)


class ResetPasswordRequest(RequestSchema):
    token = fields.String(required=True)
    password = fields.String(required=True, validate=validate.Length(min=8))


# --- Responses ---


class ErrorResponse(Schema):
    error = fields.String(required=True)


class ReferenceSchema(Schema):
    id = fields.Integer()
    type = fields.Enum(ReferenceType)
    title = fields.String()
    url = fields.String(allow_none=True)
    author = fields.String(allow_none=True)
    publication = fields.String(allow_none=True)
    published_at = fields.DateTime(allow_none=True)
    accessed_at = fields.DateTime()
    notes = fields.String(allow_none=True)


class ArgumentSchema(Schema):
    id = fields.Integer()
    debate_id = fields.Integer()
    participant_id = fields.Integer()
    author_id = fields.Integer()
    content = fields.String()
    turn_number = fields.Integer()
    created_at = fields.DateTime()
    response_to_id = fields.Integer(allow_none=True)
    rebuttal_to_id = fields.Integer(allow_none=True)
    references = fields.List(fields.Nested(ReferenceSchema))


class ParticipantSchema(Schema):
    id = fields.Integer()
    user_id = fields.Integer()
    role = fields.Enum(ParticipantRole)
    status = fields.Enum(ParticipantStatus)
    joined_at = fields.DateTime()


class DefinitionSchema(Schema):
    id = fields.Integer()
    debate_id = fields.Integer()
    term = fields.String()
    definition = fields.String()
    context = fields.String(allow_none=True)
    status = fields.Enum(DefinitionStatus)
    proposer_id = fields.Integer()
    superseded_by_id = fields.Integer(allow_none=True)
    accepted_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()
    references = fields.List(fields.Nested(ReferenceSchema))


class WinConditionSchema(Schema):
    type = fields.Enum(WinConditionType)
    winning_role = fields.Enum(ParticipantRole, allow_none=True)
    decided_at = fields.DateTime()
    description = fields.String(allow_none=True)


class ProgressSchema(Schema):
    current_turn = fields.Integer()
    progress_percent = fields.Float()
    total_possible_turns = fields.Integer()


class DebateSchema(Schema):
    id = fields.Integer()
    title = fields.String()
    description = fields.String(allow_none=True)
    format = fields.Enum(DebateFormat)
    status = fields.Enum(DebateStatus)
    max_participants = fields.Integer()
    turns_per_side = fields.Integer()
    turn_time_limit = fields.Integer(allow_none=True)
    min_references = fields.Integer()
    current_turn_number = fields.Integer()
    current_turn_side = fields.Enum(ParticipantRole)
    creator_id = fields.Integer()
    created_at = fields.DateTime()
    started_at = fields.DateTime(allow_none=True)
    completed_at = fields.DateTime(allow_none=True)
    topics = fields.Method("get_topics")
    participants = fields.List(fields.Nested(ParticipantSchema))
    arguments = fields.List(fields.Nested(ArgumentSchema))
    definitions = fields.List(fields.Nested(DefinitionSchema))
    win_condition = fields.Nested(WinConditionSchema, allow_none=True)
    progress = fields.Method("get_progress")

    def get_topics(self, debate):
        return [topic.topic.value for topic in debate.topics]

    def get_progress(self, debate):
        return ProgressSchema().dump(compute_progress(debate))


class VoteSchema(Schema):
    id = fields.Integer()
    user_id = fields.Integer()
    argument_id = fields.Integer()
    definition_id = fields.Integer()
    support = fields.Boolean()
    created_at = fields.DateTime()


class VoteResponse(Schema):
    success = fields.Boolean(required=True)
    vote = fields.Nested(VoteSchema, allow_none=True)


class SubmitTurnResponse(Schema):
    debate = fields.Nested(DebateSchema)
    arguments = fields.List(fields.Nested(ArgumentSchema))


class JoinDebateResponse(Schema):
    participant_id = fields.Integer()
    debate_status = fields.Enum(DebateStatus)


class SupersedeResponse(Schema):
    original = fields.Nested(DefinitionSchema)
    definition = fields.Nested(DefinitionSchema)


class NotificationSchema(Schema):
    id = fields.Integer()
    type = fields.Enum(NotificationType)
    title = fields.String()
    message = fields.String()
    link = fields.String(allow_none=True)
    actor_id = fields.Integer(allow_none=True)
    debate_id = fields.Integer(allow_none=True)
    argument_id = fields.Integer(allow_none=True)
    extra = fields.Dict(data_key="metadata")
    read = fields.Boolean()
    read_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()


class NotificationListResponse(Schema):
    notifications = fields.List(fields.Nested(NotificationSchema))


class UnreadCountResponse(Schema):
    count = fields.Integer(required=True)


class MarkAllReadResponse(Schema):
    updated = fields.Integer(required=True)


class TimeoutCheckResponse(Schema):
    success = fields.Boolean()
    message = fields.String()
    completed_debates = fields.List(fields.Integer())
    timestamp = fields.DateTime()


class MessageResponse(Schema):
    message = fields.String(required=True)


class TokenResponse(Schema):
    access_token = fields.String(required=True)
    token_type = fields.String(required=True)
    user_id = fields.Integer(required=True)
