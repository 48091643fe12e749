import logging

from sqlalchemy.ext.asyncio import AsyncSession

from debateforum.core.content import ensure_argument_content
from debateforum.core.definitions import build_definition
from debateforum.core.exceptions import ValidationError
from debateforum.core.references import build_references
from debateforum.database.database import create_item
from debateforum.database.models import (
    Argument,
    Debate,
    DebateFormat,
    DebateParticipant,
    DebateStatus,
    DebateTopic,
    DebateTopicType,
    ParticipantRole,
    ParticipantStatus,
)

logger = logging.getLogger(__name__)

ALL_DEBATE_TOPICS = [topic.value for topic in DebateTopicType]

# The creator opens turn 1 as proposer in these formats, so the opposer answers first.
OPPOSER_STARTS = (DebateFormat.ONE_VS_ONE, DebateFormat.ONE_VS_MANY)


def validate_debate_payload(payload: dict) -> list[DebateTopicType]:
    if not (payload.get("title") or "").strip():
        raise ValidationError("Title and at least one topic are required")
    topics = payload.get("topics") or []
    if not topics:
        raise ValidationError("Title and at least one topic are required")
    if not payload.get("initial_arguments"):
        raise ValidationError("At least one initial argument is required")

    invalid_topics = [topic for topic in topics if topic not in ALL_DEBATE_TOPICS]
    if invalid_topics:
        raise ValidationError(
            f"Invalid topics provided: {', '.join(str(t) for t in invalid_topics)}"
        )
    # Duplicates collapse; topics are a set.
    return [DebateTopicType(topic) for topic in dict.fromkeys(topics)]


def _as_enum(enum_class, value, default):
    if value is None:
        return default
    return value if isinstance(value, enum_class) else enum_class(value)


async def create_debate(session: AsyncSession, creator_id: int, payload: dict) -> Debate:
    """Create a debate with its topics, creator, and opening arguments.

    Everything is written in one transaction; any invalid argument or
    definition aborts the whole debate.
    """
    topics = validate_debate_payload(payload)
    debate_format = _as_enum(DebateFormat, payload.get("format"), DebateFormat.ONE_VS_ONE)

    async with session.begin():
        debate = await create_item(
            session,
            {
                "title": payload["title"].strip(),
                "description": payload.get("description"),
                "format": debate_format,
                "status": _as_enum(DebateStatus, payload.get("status"), DebateStatus.OPEN),
                "max_participants": payload.get("max_participants", 2),
                "turns_per_side": payload.get("turns_per_side", 3),
                "turn_time_limit": payload.get("turn_time_limit"),
                "min_references": payload.get("min_references", 1),
                "creator_id": creator_id,
                "current_turn_number": 1,
                "current_turn_side": (
                    ParticipantRole.OPPOSER
                    if debate_format in OPPOSER_STARTS
                    else ParticipantRole.PROPOSER
                ),
            },
            Debate,
            commit=False,
        )

        session.add_all(DebateTopic(debate_id=debate.id, topic=topic) for topic in topics)

        participant = await create_item(
            session,
            {
                "debate_id": debate.id,
                "user_id": creator_id,
                "role": ParticipantRole.PROPOSER,
                "status": ParticipantStatus.ACTIVE,
            },
            DebateParticipant,
            commit=False,
        )

        for argument_data in payload["initial_arguments"]:
            ensure_argument_content(argument_data.get("content"))
            session.add(
                Argument(
                    content=argument_data["content"],
                    turn_number=1,
                    debate_id=debate.id,
                    participant_id=participant.id,
                    author_id=creator_id,
                    references=build_references(argument_data.get("references")),
                )
            )

        for definition_data in payload.get("initial_definitions") or []:
            session.add(build_definition(debate.id, creator_id, definition_data))

        await session.flush()

    logger.info(f"Debate {debate.id} '{debate.title}' created by user {creator_id}")
    return debate
