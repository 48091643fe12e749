import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from debateforum.core.exceptions import NotFoundError, ValidationError
from debateforum.core.notifications import (
    build_bulk_notifications,
    build_notification,
    dispatch_notifications,
    notification_metadata,
)
from debateforum.core.references import build_references
from debateforum.database.database import get_item_by_id, get_items_by_filters
from debateforum.database.models import (
    Debate,
    DebateParticipant,
    DebateStatus,
    Definition,
    DefinitionStatus,
    NotificationType,
    ParticipantStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


def build_definition(debate_id: int, proposer_id: int, data: dict) -> Definition:
    term = (data.get("term") or "").strip()
    text = (data.get("definition") or "").strip()
    if not term or not text:
        raise ValidationError("Each definition must have both term and definition")
    context = (data.get("context") or "").strip() or None
    return Definition(
        debate_id=debate_id,
        term=term,
        definition=text,
        context=context,
        status=DefinitionStatus.PROPOSED,
        proposer_id=proposer_id,
        references=build_references(data.get("references")),
    )


def definitions_link(debate_id: int) -> str:
    return f"/debates/{debate_id}?tab=definitions"


async def _active_user_ids(session: AsyncSession, debate_id: int) -> list[int]:
    participants = await get_items_by_filters(
        session,
        DebateParticipant,
        limit=None,
        debate_id=debate_id,
        status=ParticipantStatus.ACTIVE,
    )
    return [p.user_id for p in participants]


async def _load_for_participant(
    session: AsyncSession, definition_id: int, user_id: int, action: str, label: str
) -> tuple[Definition, list[int]]:
    definition = await get_item_by_id(
        session, definition_id, Definition, load_relationships=["debate"]
    )
    if definition is None:
        raise NotFoundError(f"{label} not found")
    participant_ids = await _active_user_ids(session, definition.debate_id)
    if user_id not in participant_ids:
        raise ValidationError(f"Only debate participants can {action} definitions")
    return definition, participant_ids


async def propose_definition(
    session: AsyncSession, debate_id: int, user_id: int, data: dict
) -> Definition:
    async with session.begin():
        debate = await get_item_by_id(session, debate_id, Debate)
        if debate is None:
            raise NotFoundError("Debate not found")
        if debate.status != DebateStatus.IN_PROGRESS:
            raise ValidationError(
                "Definitions can only be submitted during ongoing debates"
            )
        definition = build_definition(debate_id, user_id, data)
        session.add(definition)
        await session.flush()
        other_ids = [
            uid for uid in await _active_user_ids(session, debate_id) if uid != user_id
        ]

    notifications = build_bulk_notifications(
        other_ids,
        notification_type=NotificationType.NEW_DEFINITION,
        title="New Definition Proposed",
        message=f'A new definition for "{definition.term}" was proposed in the debate "{debate.title}"',
        link=definitions_link(debate_id),
        actor_id=user_id,
        debate_id=debate_id,
        metadata=notification_metadata(
            NotificationType.NEW_DEFINITION,
            definitionId=definition.id,
            term=definition.term,
        ),
    )
    await dispatch_notifications(session, notifications)
    return definition


async def accept_definition(
    session: AsyncSession,
    definition_id: int,
    user_id: int,
    now: datetime | None = None,
) -> Definition:
    now = now or utcnow()
    async with session.begin():
        definition, participant_ids = await _load_for_participant(
            session, definition_id, user_id, "accept", "Definition"
        )
        if definition.superseded_by_id:
            replacement = await get_item_by_id(
                session, definition.superseded_by_id, Definition
            )
            if replacement is not None:
                replacement.status = DefinitionStatus.DEPRECATED
        definition.status = DefinitionStatus.ACCEPTED
        definition.accepted_at = now
        await session.flush()

    title = "Definition Accepted"
    link = definitions_link(definition.debate_id)
    metadata = notification_metadata(
        NotificationType.DEFINITION_ACCEPTED,
        definitionId=definition.id,
        term=definition.term,
    )
    notifications = []
    if definition.proposer_id != user_id:
        notifications.append(
            build_notification(
                NotificationType.DEFINITION_ACCEPTED,
                user_id=definition.proposer_id,
                title=title,
                message=f'Your definition for "{definition.term}" has been accepted in the debate "{definition.debate.title}"',
                link=link,
                actor_id=user_id,
                debate_id=definition.debate_id,
                metadata=metadata,
            )
        )
    notifications += build_bulk_notifications(
        [uid for uid in participant_ids if uid not in (user_id, definition.proposer_id)],
        notification_type=NotificationType.DEFINITION_ACCEPTED,
        title=title,
        message=f'The definition for "{definition.term}" has been accepted in the debate "{definition.debate.title}"',
        link=link,
        actor_id=user_id,
        debate_id=definition.debate_id,
        metadata=metadata,
    )
    await dispatch_notifications(session, notifications)
    return definition


async def supersede_definition(
    session: AsyncSession, definition_id: int, user_id: int, data: dict
) -> tuple[Definition, Definition]:
    """Replace a definition with a revised one, extending its chain.

    Returns ``(original, replacement)``.
    """
    async with session.begin():
        original, _ = await _load_for_participant(
            session, definition_id, user_id, "supersede", "Original definition"
        )
        if original.superseded_by_id is not None:
            raise ValidationError("This definition has already been superseded")

        replacement = build_definition(original.debate_id, user_id, data)
        session.add(replacement)
        await session.flush()

        if original.status == DefinitionStatus.ACCEPTED:
            original.status = DefinitionStatus.DEPRECATED
        else:
            original.status = DefinitionStatus.CONTESTED
        original.superseded_by_id = replacement.id
        await session.flush()

    notifications = []
    if original.proposer_id != user_id:
        notifications.append(
            build_notification(
                NotificationType.DEFINITION_IMPROVED,
                user_id=original.proposer_id,
                title="Definition Improved",
                message=f'Your definition for "{original.term}" has been improved by another participant in the debate "{original.debate.title}"',
                link=definitions_link(original.debate_id),
                actor_id=user_id,
                debate_id=original.debate_id,
                metadata=notification_metadata(
                    NotificationType.DEFINITION_IMPROVED,
                    originalDefinitionId=original.id,
                    newDefinitionId=replacement.id,
                    term=original.term,
                ),
            )
        )
    await dispatch_notifications(session, notifications)
    return original, replacement
