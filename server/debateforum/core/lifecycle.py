"""Turn order, progress, and timeout resolution for running debates.

A debate alternates sides within a turn: the side named by
``current_turn_side`` submits, and once every active participant of that
side has argued the turn passes to the other side. After the opposer side
closes the last turn the debate completes on net argument votes. The
timeout sweep forfeits whoever let the turn time limit lapse.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from debateforum.core.content import ensure_argument_content
from debateforum.core.exceptions import NotFoundError, ValidationError
from debateforum.core.notifications import (
    build_bulk_notifications,
    build_notification,
    dispatch_notifications,
    notification_metadata,
)
from debateforum.core.references import build_references
from debateforum.database.database import (
    create_item,
    get_first_by_filters,
    get_item_by_id,
    get_items_by_filters,
)
from debateforum.database.models import (
    Argument,
    Debate,
    DebateFormat,
    DebateParticipant,
    DebateStatus,
    NotificationType,
    ParticipantRole,
    ParticipantStatus,
    WinCondition,
    WinConditionType,
    utcnow,
)

logger = logging.getLogger(__name__)

OPPOSITE_ROLE = {
    ParticipantRole.PROPOSER: ParticipantRole.OPPOSER,
    ParticipantRole.OPPOSER: ParticipantRole.PROPOSER,
}


@dataclass
class Progress:
    current_turn: int
    progress_percent: float
    total_possible_turns: int


def compute_progress(debate: Debate, arguments: list[Argument] | None = None) -> Progress:
    if arguments is None:
        arguments = debate.arguments
    current_turn = max((argument.turn_number for argument in arguments), default=0)
    total_possible_turns = debate.turns_per_side * debate.max_participants
    if total_possible_turns == 0:
        progress_percent = 0.0
    else:
        progress_percent = current_turn / total_possible_turns * 100
    return Progress(current_turn, progress_percent, total_possible_turns)


def debate_link(debate_id: int) -> str:
    return f"/debates/{debate_id}"


async def _active_participants(
    session: AsyncSession, debate_id: int, role: ParticipantRole | None = None
) -> list[DebateParticipant]:
    filters = {"debate_id": debate_id, "status": ParticipantStatus.ACTIVE}
    if role is not None:
        filters["role"] = role
    return await get_items_by_filters(
        session, DebateParticipant, limit=None, load_relationships=["user"], **filters
    )


async def _upsert_win_condition(session: AsyncSession, debate_id: int, **fields) -> WinCondition:
    win_condition = await get_first_by_filters(session, WinCondition, debate_id=debate_id)
    if win_condition is None:
        return await create_item(
            session, {"debate_id": debate_id, **fields}, WinCondition, commit=False
        )
    for key, value in fields.items():
        setattr(win_condition, key, value)
    await session.flush()
    return win_condition


async def join_debate(
    session: AsyncSession,
    debate_id: int,
    user_id: int,
    role: ParticipantRole,
    now: datetime | None = None,
) -> tuple[DebateParticipant, Debate]:
    now = now or utcnow()
    if role not in OPPOSITE_ROLE:
        raise ValidationError("Participants join as proposer or opposer")
    async with session.begin():
        debate = await get_item_by_id(
            session, debate_id, Debate, load_relationships=["participants"], for_update=True
        )
        if debate is None:
            raise NotFoundError("Debate not found")
        if debate.status != DebateStatus.OPEN:
            raise ValidationError("This debate is not accepting participants")
        participants = list(debate.participants)
        if any(p.user_id == user_id for p in participants):
            raise ValidationError("You are already a participant in this debate")
        if debate.format == DebateFormat.ONE_VS_ONE and any(
            p.role == role for p in participants
        ):
            raise ValidationError(f"The {role.value.lower()} role is already taken")
        if len(participants) >= debate.max_participants:
            raise ValidationError("This debate is full")

        participant = await create_item(
            session,
            {
                "debate_id": debate.id,
                "user_id": user_id,
                "role": role,
                "status": ParticipantStatus.ACTIVE,
                "joined_at": now,
            },
            DebateParticipant,
            commit=False,
        )
        if len(participants) + 1 >= debate.max_participants:
            debate.status = DebateStatus.IN_PROGRESS
            debate.started_at = now
            logger.info(f"Debate {debate.id} is full and now in progress")
        await session.flush()

    notifications = []
    if debate.creator_id != user_id:
        notifications.append(
            build_notification(
                NotificationType.DEBATE_ACCEPTED,
                user_id=debate.creator_id,
                title="Debate Challenge Accepted!",
                message=f'A user has accepted your debate challenge "{debate.title}" as {role.value.lower()}',
                link=debate_link(debate.id),
                actor_id=user_id,
                debate_id=debate.id,
                metadata=notification_metadata(
                    NotificationType.DEBATE_ACCEPTED, participantRole=role.value
                ),
            )
        )
    await dispatch_notifications(session, notifications)
    return participant, debate


async def _argument_in_debate(
    session: AsyncSession, debate_id: int, argument_id: int | None
) -> int | None:
    if not argument_id:
        return None
    argument = await get_item_by_id(session, argument_id, Argument)
    if argument is None or argument.debate_id != debate_id:
        return None
    return argument.id


async def _team_vote_counts(session: AsyncSession, debate_id: int) -> dict:
    arguments = await get_items_by_filters(
        session,
        Argument,
        limit=None,
        load_relationships=["votes", "participant"],
        debate_id=debate_id,
    )
    counts = {ParticipantRole.PROPOSER: 0, ParticipantRole.OPPOSER: 0}
    for argument in arguments:
        net_votes = sum(1 if vote.support else -1 for vote in argument.votes)
        if argument.participant.role == ParticipantRole.PROPOSER:
            counts[ParticipantRole.PROPOSER] += net_votes
        else:
            counts[ParticipantRole.OPPOSER] += net_votes
    return counts


async def _complete_on_votes(
    session: AsyncSession, debate: Debate, actor_id: int, now: datetime
) -> list[dict]:
    debate.status = DebateStatus.COMPLETED
    debate.completed_at = now

    counts = await _team_vote_counts(session, debate.id)
    proposer_votes = counts[ParticipantRole.PROPOSER]
    opposer_votes = counts[ParticipantRole.OPPOSER]
    winning_role = None
    if proposer_votes > opposer_votes:
        winning_role = ParticipantRole.PROPOSER
    elif opposer_votes > proposer_votes:
        winning_role = ParticipantRole.OPPOSER

    summary = f"Debate completed after {debate.turns_per_side} turns per side."
    if winning_role:
        description = f"{summary} {winning_role.value}s won with majority votes."
        winner_text = f"The {winning_role.value.lower()}s have won the debate!"
    else:
        description = f"{summary} Result: Tie."
        winner_text = "The debate ended in a tie!"
    await _upsert_win_condition(
        session,
        debate.id,
        type=WinConditionType.VOTE_COUNT,
        winning_role=winning_role,
        decided_at=now,
        description=description,
    )
    logger.info(f"Debate {debate.id} completed, winner: {winning_role}")

    participants = await _active_participants(session, debate.id)
    return build_bulk_notifications(
        [p.user_id for p in participants],
        notification_type=NotificationType.DEBATE_COMPLETED,
        title="Debate Completed",
        message=f'The debate "{debate.title}" has been completed. {winner_text}',
        link=debate_link(debate.id),
        actor_id=actor_id,
        debate_id=debate.id,
        metadata=notification_metadata(
            NotificationType.DEBATE_COMPLETED,
            debateTitle=debate.title,
            winningRole=winning_role.value if winning_role else None,
            totalTurns=debate.turns_per_side * 2,
        ),
    )


async def _advance_turn(
    session: AsyncSession, debate: Debate, actor_id: int, now: datetime
) -> list[dict]:
    side = debate.current_turn_side
    same_side = await _active_participants(session, debate.id, role=side)
    result = await session.execute(
        select(Argument.participant_id)
        .where(
            Argument.debate_id == debate.id,
            Argument.turn_number == debate.current_turn_number,
            Argument.participant_id.in_([p.id for p in same_side]),
        )
        .distinct()
    )
    if len(result.scalars().all()) < len(same_side):
        return []

    turn_number = debate.current_turn_number
    if side == ParticipantRole.PROPOSER:
        debate.current_turn_side = ParticipantRole.OPPOSER
        next_side = ParticipantRole.OPPOSER
        title = "Your turn to respond"
        message = (
            f"The proposers have made their arguments for turn {turn_number}. "
            f'It\'s your turn to respond in the debate "{debate.title}"'
        )
    elif turn_number >= debate.turns_per_side:
        return await _complete_on_votes(session, debate, actor_id, now)
    else:
        turn_number += 1
        debate.current_turn_number = turn_number
        debate.current_turn_side = ParticipantRole.PROPOSER
        next_side = ParticipantRole.PROPOSER
        title = "New turn started"
        message = (
            f"Turn {turn_number} has started. "
            f'It\'s your turn to present arguments in the debate "{debate.title}"'
        )

    next_participants = await _active_participants(session, debate.id, role=next_side)
    return build_bulk_notifications(
        [p.user_id for p in next_participants],
        notification_type=NotificationType.NEW_ARGUMENT,
        title=title,
        message=message,
        link=debate_link(debate.id),
        actor_id=actor_id,
        debate_id=debate.id,
        metadata=notification_metadata(
            NotificationType.NEW_ARGUMENT,
            turnNumber=turn_number,
            turnSide=next_side.value,
            debateTitle=debate.title,
        ),
    )


async def submit_turn(
    session: AsyncSession,
    debate_id: int,
    user_id: int,
    arguments_data: list[dict],
    forfeit: bool = False,
    now: datetime | None = None,
) -> tuple[Debate, list[Argument]]:
    """Record the caller's arguments for the current turn and advance it.

    With ``forfeit`` the arguments are a closing statement: the caller
    withdraws, and the debate ends if their side has nobody left.
    """
    now = now or utcnow()
    async with session.begin():
        # The row lock serialises this against the timeout sweep.
        debate = await get_item_by_id(session, debate_id, Debate, for_update=True)
        if debate is None:
            raise NotFoundError("Debate not found")
        if debate.status != DebateStatus.IN_PROGRESS:
            raise ValidationError("Debate is not in progress")

        participant = await get_first_by_filters(
            session,
            DebateParticipant,
            debate_id=debate_id,
            user_id=user_id,
            status=ParticipantStatus.ACTIVE,
        )
        if participant is None:
            raise ValidationError("You are not a participant in this debate")
        if participant.role != debate.current_turn_side:
            raise ValidationError("It's not your turn to submit arguments")
        already_submitted = await get_first_by_filters(
            session,
            Argument,
            participant_id=participant.id,
            turn_number=debate.current_turn_number,
        )
        if already_submitted is not None:
            raise ValidationError("You have already submitted arguments for this turn")

        if not arguments_data:
            raise ValidationError("At least one argument is required")
        for argument_data in arguments_data:
            ensure_argument_content(argument_data.get("content"))
            # A closing statement on forfeit needs no sources.
            if forfeit:
                continue
            if len(argument_data.get("references") or []) < debate.min_references:
                raise ValidationError(
                    f"Each argument requires at least {debate.min_references} reference(s)"
                )

        created = []
        for argument_data in arguments_data:
            argument = Argument(
                debate_id=debate_id,
                participant_id=participant.id,
                author_id=user_id,
                content=argument_data["content"],
                turn_number=debate.current_turn_number,
                created_at=now,
                response_to_id=await _argument_in_debate(
                    session, debate_id, argument_data.get("response_to_id")
                ),
                rebuttal_to_id=await _argument_in_debate(
                    session, debate_id, argument_data.get("rebuttal_to_id")
                ),
                references=build_references(argument_data.get("references")),
            )
            session.add(argument)
            created.append(argument)
        await session.flush()

        if forfeit:
            notifications = await _forfeit_turn(session, debate, participant, now)
        else:
            notifications = await _advance_turn(session, debate, user_id, now)

    await dispatch_notifications(session, notifications)
    return debate, created


async def _forfeit_turn(
    session: AsyncSession, debate: Debate, participant: DebateParticipant, now: datetime
) -> list[dict]:
    """Withdraw a participant; their side loses once nobody on it remains."""
    participant.status = ParticipantStatus.FORFEITED
    await session.flush()
    role = participant.role
    side = role.value.lower()
    remaining = await _active_participants(session, debate.id, role=role)
    logger.info(
        f"User {participant.user_id} forfeited debate {debate.id}, "
        f"{len(remaining)} {side}(s) remain"
    )

    notifications = []
    if remaining:
        # Teammates who already argued may now close the side's turn.
        notifications = await _advance_turn(session, debate, participant.user_id, now)
        winning_role = None
        notification_type = NotificationType.NEW_ARGUMENT
        title = "Participant forfeited"
        message = (
            f'A {side} has forfeited in the debate "{debate.title}". '
            "The debate continues with remaining participants."
        )
    else:
        winning_role = OPPOSITE_ROLE[role]
        await _complete_by_forfeit(
            session,
            debate,
            winning_role,
            f"All {side}s have forfeited. {winning_role.value}s win by forfeit.",
            now,
        )
        notification_type = NotificationType.DEBATE_COMPLETED
        title = "Debate Completed"
        message = (
            f'The debate "{debate.title}" has ended because all {side}s have '
            f"forfeited. {winning_role.value}s win!"
        )

    participants = await get_items_by_filters(
        session, DebateParticipant, limit=None, debate_id=debate.id
    )
    notifications += build_bulk_notifications(
        [p.user_id for p in participants],
        notification_type=notification_type,
        title=title,
        message=message,
        link=debate_link(debate.id),
        actor_id=participant.user_id,
        debate_id=debate.id,
        metadata=notification_metadata(
            notification_type,
            debateTitle=debate.title,
            winningRole=winning_role.value if winning_role else None,
            isForfeit=True,
            forfeitedBy=role.value,
            isDebateOver=debate.status == DebateStatus.COMPLETED,
        ),
    )
    return notifications


async def _complete_by_forfeit(
    session: AsyncSession,
    debate: Debate,
    winning_role: ParticipantRole | None,
    description: str,
    now: datetime,
) -> None:
    await _upsert_win_condition(
        session,
        debate.id,
        type=WinConditionType.FORFEIT,
        winning_role=winning_role,
        decided_at=now,
        description=description,
    )
    debate.status = DebateStatus.COMPLETED
    debate.completed_at = now
    await session.flush()


async def _latest_argument(session: AsyncSession, debate_id: int) -> Argument | None:
    return await get_first_by_filters(
        session,
        Argument,
        order_by=Argument.created_at.desc(),
        debate_id=debate_id,
    )


async def _resolve_timeout(
    session: AsyncSession, debate_id: int, now: datetime
) -> DebateParticipant | None:
    async with session.begin():
        debate = await get_item_by_id(session, debate_id, Debate, for_update=True)
        # Re-checked under the lock: a submission may have landed since listing.
        if (
            debate is None
            or debate.status != DebateStatus.IN_PROGRESS
            or debate.turn_time_limit is None
        ):
            return None

        last_argument = await _latest_argument(session, debate_id)
        if last_argument is None:
            return None
        deadline = last_argument.created_at + timedelta(hours=debate.turn_time_limit)
        if now <= deadline:
            return None

        candidates = [
            p
            for p in await _active_participants(session, debate_id)
            if p.id != last_argument.participant_id
        ]
        if not candidates:
            return None
        if len(candidates) > 1:
            # Only two-sided debates have a single participant owing the turn.
            logger.warning(
                f"Timeout for debate {debate_id} is ambiguous: "
                f"{len(candidates)} active participants could owe the turn, skipping"
            )
            return None

        forfeiting = candidates[0]
        forfeiter_name = forfeiting.user.name if forfeiting.user else None
        forfeiter_name = forfeiter_name or f"User {forfeiting.user_id}"
        logger.info(
            f"Timeout for debate {debate_id}, forfeiting participant {forfeiting.user_id}"
        )
        forfeiting.status = ParticipantStatus.FORFEITED
        winning_role = OPPOSITE_ROLE.get(forfeiting.role)
        await _complete_by_forfeit(
            session,
            debate,
            winning_role,
            f"{forfeiter_name} forfeited due to timeout",
            now,
        )

        participants = await get_items_by_filters(
            session, DebateParticipant, limit=None, debate_id=debate_id
        )
        notifications = build_bulk_notifications(
            [p.user_id for p in participants],
            notification_type=NotificationType.DEBATE_COMPLETED,
            title="Debate Completed",
            message=f'The debate "{debate.title}" has ended: {forfeiter_name} forfeited due to timeout.',
            link=debate_link(debate_id),
            debate_id=debate_id,
            metadata=notification_metadata(
                NotificationType.DEBATE_COMPLETED,
                debateTitle=debate.title,
                winningRole=winning_role.value if winning_role else None,
                isForfeit=True,
                forfeitedBy=forfeiting.role.value,
            ),
        )

    await dispatch_notifications(session, notifications)
    return forfeiting


async def sweep_timeouts(session: AsyncSession, now: datetime | None = None) -> list[int]:
    """Forfeit participants who let the turn time limit lapse.

    Meant to be triggered periodically from outside; holds no timer itself.
    Each debate resolves in its own transaction before the next is looked
    at. Returns the ids of debates completed by this sweep.
    """
    now = now or utcnow()
    logger.info("Checking debate timeouts...")
    async with session.begin():
        result = await session.execute(
            select(Debate.id).where(
                Debate.status == DebateStatus.IN_PROGRESS,
                Debate.turn_time_limit.is_not(None),
            )
        )
        debate_ids = result.scalars().all()

    completed = []
    for debate_id in debate_ids:
        if await _resolve_timeout(session, debate_id, now) is not None:
            completed.append(debate_id)
    logger.info(f"Timeout check completed, {len(completed)} debate(s) forfeited")
    return completed
