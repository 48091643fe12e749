from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from debateforum.core import lifecycle, votes
from debateforum.core.creation import create_debate
from debateforum.core.exceptions import NotFoundError, ValidationError
from debateforum.database.database import get_first_by_filters, get_item_by_id
from debateforum.database.models import (
    Argument,
    Debate,
    DebateFormat,
    DebateStatus,
    Notification,
    NotificationType,
    ParticipantRole,
    ParticipantStatus,
    WinCondition,
    WinConditionType,
    utcnow,
)
from factories import argument, debate_payload


async def _reload(session_factory, debate_id):
    async with session_factory() as session:
        return await get_item_by_id(
            session,
            debate_id,
            Debate,
            load_relationships=["participants", "arguments", "win_condition"],
        )


async def _notifications(session_factory, notification_type):
    async with session_factory() as session:
        result = await session.execute(
            select(Notification).where(Notification.type == notification_type)
        )
        return result.scalars().all()


async def _submit(session_factory, debate_id, user, **argument_data):
    async with session_factory() as session:
        return await lifecycle.submit_turn(
            session, debate_id, user.id, [argument(**argument_data)]
        )


def test_progress_counts_highest_turn():
    debate = SimpleNamespace(turns_per_side=3, max_participants=2)
    arguments = [SimpleNamespace(turn_number=n) for n in (1, 2, 2, 1)]

    progress = lifecycle.compute_progress(debate, arguments)

    assert progress.current_turn == 2
    assert progress.total_possible_turns == 6
    assert progress.progress_percent == pytest.approx(33.33, abs=0.01)


def test_progress_without_arguments_or_turns():
    debate = SimpleNamespace(turns_per_side=3, max_participants=2, arguments=[])
    assert lifecycle.compute_progress(debate).progress_percent == 0

    empty = SimpleNamespace(turns_per_side=0, max_participants=2)
    progress = lifecycle.compute_progress(empty, [SimpleNamespace(turn_number=1)])
    assert progress.progress_percent == 0


@pytest.mark.asyncio
async def test_join_fills_and_starts_debate(session_factory, running_debate, users):
    debate = await _reload(session_factory, running_debate.id)

    assert debate.status == DebateStatus.IN_PROGRESS
    assert debate.started_at is not None
    assert {(p.user_id, p.role) for p in debate.participants} == {
        (users["alice"].id, ParticipantRole.PROPOSER),
        (users["bob"].id, ParticipantRole.OPPOSER),
    }
    accepted = await _notifications(session_factory, NotificationType.DEBATE_ACCEPTED)
    assert [n.user_id for n in accepted] == [users["alice"].id]


@pytest.mark.asyncio
async def test_join_rejects_taken_role_and_full_debate(session_factory, users):
    async with session_factory() as session:
        debate = await create_debate(session, users["alice"].id, debate_payload())

    async with session_factory() as session:
        with pytest.raises(ValidationError, match="already a participant"):
            await lifecycle.join_debate(
                session, debate.id, users["alice"].id, ParticipantRole.OPPOSER
            )
    async with session_factory() as session:
        with pytest.raises(ValidationError, match="role is already taken"):
            await lifecycle.join_debate(
                session, debate.id, users["bob"].id, ParticipantRole.PROPOSER
            )
    async with session_factory() as session:
        await lifecycle.join_debate(
            session, debate.id, users["bob"].id, ParticipantRole.OPPOSER
        )
    async with session_factory() as session:
        with pytest.raises(ValidationError, match="not accepting participants"):
            await lifecycle.join_debate(
                session, debate.id, users["carol"].id, ParticipantRole.PROPOSER
            )
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await lifecycle.join_debate(
                session, 999, users["carol"].id, ParticipantRole.OPPOSER
            )


@pytest.mark.asyncio
async def test_submit_turn_enforces_order(session_factory, running_debate, users):
    # The creator opened turn 1, so the opposer answers first.
    with pytest.raises(ValidationError, match="not your turn"):
        await _submit(session_factory, running_debate.id, users["alice"])
    with pytest.raises(ValidationError, match="not a participant"):
        await _submit(session_factory, running_debate.id, users["carol"])

    debate, created = await _submit(session_factory, running_debate.id, users["bob"])

    assert [a.turn_number for a in created] == [1]
    assert debate.current_turn_number == 2
    assert debate.current_turn_side == ParticipantRole.PROPOSER
    turn_notices = await _notifications(session_factory, NotificationType.NEW_ARGUMENT)
    assert [n.user_id for n in turn_notices] == [users["alice"].id]
    assert turn_notices[0].extra["turnNumber"] == 2


@pytest.mark.asyncio
async def test_submit_turn_validates_arguments(session_factory, running_debate, users):
    with pytest.raises(ValidationError, match="at least 10 characters"):
        await _submit(session_factory, running_debate.id, users["bob"], content="<p>short</p>")
    with pytest.raises(ValidationError, match="at least 1 reference"):
        await _submit(session_factory, running_debate.id, users["bob"], references=[])

    async with session_factory() as session:
        with pytest.raises(ValidationError, match="At least one argument"):
            await lifecycle.submit_turn(session, running_debate.id, users["bob"].id, [])

    debate = await _reload(session_factory, running_debate.id)
    assert len(debate.arguments) == 1
    assert debate.current_turn_number == 1
    assert debate.current_turn_side == ParticipantRole.OPPOSER


@pytest.mark.asyncio
async def test_submit_turn_links_rebuttal(session_factory, running_debate, users):
    async with session_factory() as session:
        opening = await get_first_by_filters(
            session, Argument, debate_id=running_debate.id
        )
    async with session_factory() as session:
        _, created = await lifecycle.submit_turn(
            session,
            running_debate.id,
            users["bob"].id,
            [{**argument(), "rebuttal_to_id": opening.id, "response_to_id": 12345}],
        )

    assert created[0].rebuttal_to_id == opening.id
    # Unknown targets are dropped rather than failing the turn.
    assert created[0].response_to_id is None


@pytest.mark.asyncio
async def test_last_turn_without_votes_is_a_tie(session_factory, running_debate, users):
    alice, bob = users["alice"], users["bob"]
    await _submit(session_factory, running_debate.id, bob)
    for _ in range(2):
        await _submit(session_factory, running_debate.id, alice)
        await _submit(session_factory, running_debate.id, bob)

    debate = await _reload(session_factory, running_debate.id)
    assert debate.status == DebateStatus.COMPLETED
    assert debate.win_condition.type == WinConditionType.VOTE_COUNT
    assert debate.win_condition.winning_role is None
    assert "Tie" in debate.win_condition.description
    assert lifecycle.compute_progress(debate).current_turn == 3

    completed = await _notifications(session_factory, NotificationType.DEBATE_COMPLETED)
    assert {n.user_id for n in completed} == {alice.id, bob.id}

    with pytest.raises(ValidationError, match="not in progress"):
        await _submit(session_factory, running_debate.id, alice)


@pytest.mark.asyncio
async def test_votes_decide_the_winner(session_factory, running_debate, users):
    alice, bob = users["alice"], users["bob"]
    async with session_factory() as session:
        opening = await get_first_by_filters(
            session, Argument, debate_id=running_debate.id, author_id=alice.id
        )
    async with session_factory() as session:
        await votes.vote(session, opening.id, "argument", True, users["carol"].id)

    await _submit(session_factory, running_debate.id, bob)
    for _ in range(2):
        await _submit(session_factory, running_debate.id, alice)
        await _submit(session_factory, running_debate.id, bob)

    debate = await _reload(session_factory, running_debate.id)
    assert debate.win_condition.winning_role == ParticipantRole.PROPOSER
    assert debate.completed_at is not None


@pytest.mark.asyncio
async def test_sweep_forfeits_stalled_participant(session_factory, running_debate, users):
    now = utcnow() + timedelta(hours=25)

    async with session_factory() as session:
        completed = await lifecycle.sweep_timeouts(session, now=now)

    assert completed == [running_debate.id]
    debate = await _reload(session_factory, running_debate.id)
    assert debate.status == DebateStatus.COMPLETED
    assert debate.completed_at == now
    statuses = {p.user_id: p.status for p in debate.participants}
    assert statuses == {
        users["alice"].id: ParticipantStatus.ACTIVE,
        users["bob"].id: ParticipantStatus.FORFEITED,
    }
    assert debate.win_condition.type == WinConditionType.FORFEIT
    assert debate.win_condition.winning_role == ParticipantRole.PROPOSER
    assert debate.win_condition.description == "Bob forfeited due to timeout"

    notices = await _notifications(session_factory, NotificationType.DEBATE_COMPLETED)
    assert {n.user_id for n in notices} == {users["alice"].id, users["bob"].id}
    assert all(n.extra["isForfeit"] for n in notices)

    async with session_factory() as session:
        assert await lifecycle.sweep_timeouts(session, now=now) == []
        count = await session.execute(select(func.count()).select_from(WinCondition))
        assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_sweep_leaves_debates_within_limit(session_factory, running_debate):
    async with session_factory() as session:
        completed = await lifecycle.sweep_timeouts(
            session, now=utcnow() + timedelta(hours=23)
        )

    assert completed == []
    debate = await _reload(session_factory, running_debate.id)
    assert debate.status == DebateStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_sweep_skips_ambiguous_multi_party_debate(session_factory, users):
    payload = debate_payload(format=DebateFormat.ONE_VS_MANY.value, max_participants=3)
    async with session_factory() as session:
        debate = await create_debate(session, users["alice"].id, payload)
    for name in ("bob", "carol"):
        async with session_factory() as session:
            await lifecycle.join_debate(
                session, debate.id, users[name].id, ParticipantRole.OPPOSER
            )

    async with session_factory() as session:
        completed = await lifecycle.sweep_timeouts(
            session, now=utcnow() + timedelta(hours=48)
        )

    assert completed == []
    debate = await _reload(session_factory, debate.id)
    assert debate.status == DebateStatus.IN_PROGRESS
    assert debate.win_condition is None


@pytest.mark.asyncio
async def test_join_requires_a_side(session_factory, users):
    async with session_factory() as session:
        debate = await create_debate(session, users["alice"].id, debate_payload())

    async with session_factory() as session:
        with pytest.raises(ValidationError, match="proposer or opposer"):
            await lifecycle.join_debate(
                session, debate.id, users["bob"].id, ParticipantRole.NEUTRAL
            )

    debate = await _reload(session_factory, debate.id)
    assert debate.status == DebateStatus.OPEN
    assert len(debate.participants) == 1


@pytest.mark.asyncio
async def test_forfeit_ends_one_vs_one_debate(session_factory, running_debate, users):
    async with session_factory() as session:
        debate, created = await lifecycle.submit_turn(
            session,
            running_debate.id,
            users["bob"].id,
            [argument(content="I concede this debate.", references=[])],
            forfeit=True,
        )

    assert len(created) == 1
    debate = await _reload(session_factory, running_debate.id)
    assert debate.status == DebateStatus.COMPLETED
    assert debate.win_condition.type == WinConditionType.FORFEIT
    assert debate.win_condition.winning_role == ParticipantRole.PROPOSER
    bob = next(p for p in debate.participants if p.user_id == users["bob"].id)
    assert bob.status == ParticipantStatus.FORFEITED

    completed = await _notifications(session_factory, NotificationType.DEBATE_COMPLETED)
    assert {n.user_id for n in completed} == {users["alice"].id, users["bob"].id}
    assert all(n.extra["isForfeit"] and n.extra["isDebateOver"] for n in completed)


@pytest.mark.asyncio
async def test_forfeit_still_needs_content(session_factory, running_debate, users):
    async with session_factory() as session:
        with pytest.raises(ValidationError, match="at least 10 characters"):
            await lifecycle.submit_turn(
                session,
                running_debate.id,
                users["bob"].id,
                [argument(content="bye", references=[])],
                forfeit=True,
            )

    debate = await _reload(session_factory, running_debate.id)
    assert debate.status == DebateStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_forfeit_with_teammates_left_continues(session_factory, users):
    payload = debate_payload(format=DebateFormat.ONE_VS_MANY.value, max_participants=3)
    async with session_factory() as session:
        debate = await create_debate(session, users["alice"].id, payload)
    for name in ("bob", "carol"):
        async with session_factory() as session:
            await lifecycle.join_debate(
                session, debate.id, users[name].id, ParticipantRole.OPPOSER
            )

    await _submit(session_factory, debate.id, users["bob"])
    async with session_factory() as session:
        await lifecycle.submit_turn(
            session,
            debate.id,
            users["carol"].id,
            [argument(content="I have to step away now.", references=[])],
            forfeit=True,
        )

    debate = await _reload(session_factory, debate.id)
    assert debate.status == DebateStatus.IN_PROGRESS
    assert debate.win_condition is None
    # bob already argued, so carol leaving closes the opposer half of turn 1.
    assert debate.current_turn_number == 2
    assert debate.current_turn_side == ParticipantRole.PROPOSER
    carol = next(p for p in debate.participants if p.user_id == users["carol"].id)
    assert carol.status == ParticipantStatus.FORFEITED
