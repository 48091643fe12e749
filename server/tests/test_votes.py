import pytest
from sqlalchemy import func, select

from debateforum.core import votes
from debateforum.core.creation import create_debate
from debateforum.core.exceptions import NotFoundError, ValidationError
from debateforum.core.votes import VoteState, next_vote_state
from debateforum.database.database import get_first_by_filters
from debateforum.database.models import (
    Argument,
    ArgumentVote,
    Definition,
    DefinitionVote,
    Notification,
    NotificationType,
)
from factories import debate_payload


async def _count(session, model):
    async with session.begin():
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _first(session, model, **filters):
    async with session.begin():
        return await get_first_by_filters(session, model, **filters)


@pytest.mark.parametrize(
    "current, support, expected",
    [
        (VoteState.NO_VOTE, True, VoteState.UPVOTED),
        (VoteState.NO_VOTE, False, VoteState.DOWNVOTED),
        (VoteState.UPVOTED, True, VoteState.NO_VOTE),
        (VoteState.UPVOTED, False, VoteState.DOWNVOTED),
        (VoteState.DOWNVOTED, False, VoteState.NO_VOTE),
        (VoteState.DOWNVOTED, True, VoteState.UPVOTED),
    ],
)
def test_next_vote_state(current, support, expected):
    assert next_vote_state(current, support) == expected


@pytest.mark.asyncio
async def test_same_vote_twice_removes_it(session, running_debate, users):
    argument = await _first(session, Argument, debate_id=running_debate.id)
    bob = users["bob"].id

    first = await votes.vote(session, argument.id, "argument", True, bob)
    assert first.success and first.state == VoteState.UPVOTED
    assert first.vote.support is True

    second = await votes.vote(session, argument.id, "argument", True, bob)
    assert second.state == VoteState.NO_VOTE
    assert second.vote is None
    assert await _count(session, ArgumentVote) == 0


@pytest.mark.asyncio
async def test_opposite_vote_flips_single_row(session, running_debate, users):
    argument = await _first(session, Argument, debate_id=running_debate.id)
    bob = users["bob"].id

    await votes.vote(session, argument.id, "argument", True, bob)
    result = await votes.vote(session, argument.id, "argument", False, bob)

    assert result.state == VoteState.DOWNVOTED
    assert await _count(session, ArgumentVote) == 1
    row = await _first(session, ArgumentVote, argument_id=argument.id)
    assert row.support is False


@pytest.mark.asyncio
async def test_vote_notifies_author(session, running_debate, users):
    argument = await _first(session, Argument, debate_id=running_debate.id)

    await votes.vote(session, argument.id, "argument", False, users["carol"].id)

    notification = await _first(
        session, Notification, type=NotificationType.ARGUMENT_VOTE
    )
    assert notification.user_id == users["alice"].id
    assert notification.actor_id == users["carol"].id
    assert notification.message == "Carol opposed your argument"
    assert notification.extra["voteType"] == "opposed"


@pytest.mark.asyncio
async def test_own_vote_sends_no_notification(session, running_debate, users):
    argument = await _first(session, Argument, debate_id=running_debate.id)

    await votes.vote(session, argument.id, "argument", True, users["alice"].id)

    assert await _first(session, Notification, type=NotificationType.ARGUMENT_VOTE) is None


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_vote(
    session, running_debate, users, monkeypatch
):
    argument = await _first(session, Argument, debate_id=running_debate.id)

    def broken(*args, **kwargs):
        raise RuntimeError("template blew up")

    monkeypatch.setattr(votes.ArgumentTarget, "notification_for", broken)
    result = await votes.vote(session, argument.id, "argument", True, users["bob"].id)

    assert result.success
    assert result.state == VoteState.UPVOTED
    assert result.vote.support is True
    assert await _count(session, ArgumentVote) == 1


@pytest.mark.asyncio
async def test_failed_notification_write_keeps_vote_usable(
    session, running_debate, users, monkeypatch
):
    argument = await _first(session, Argument, debate_id=running_debate.id)
    # The row cannot be built, so the notification insert fails after the vote commits.
    monkeypatch.setattr(
        votes.ArgumentTarget,
        "notification_for",
        lambda self, item, voter, support: {"no_such_column": 1},
    )

    result = await votes.vote(session, argument.id, "argument", False, users["bob"].id)

    assert result.state == VoteState.DOWNVOTED
    assert result.vote.support is False
    assert result.vote.argument_id == argument.id
    assert await _count(session, ArgumentVote) == 1
    notification = await _first(
        session, Notification, type=NotificationType.ARGUMENT_VOTE
    )
    assert notification is None


@pytest.mark.asyncio
async def test_definition_vote(session, session_factory, users):
    payload = debate_payload(
        initial_definitions=[{"term": "car", "definition": "A private motor vehicle"}]
    )
    debate = await create_debate(session, users["alice"].id, payload)
    definition = await _first(session, Definition, debate_id=debate.id)

    result = await votes.vote(session, definition.id, "definition", True, users["bob"].id)

    assert result.state == VoteState.UPVOTED
    assert result.vote.definition_id == definition.id
    assert await _count(session, DefinitionVote) == 1
    notification = await _first(
        session, Notification, type=NotificationType.DEFINITION_VOTE
    )
    assert notification.user_id == users["alice"].id
    assert "car" in notification.message


@pytest.mark.asyncio
async def test_missing_target(session, users):
    with pytest.raises(NotFoundError, match="Argument not found"):
        await votes.vote(session, 999, "argument", True, users["bob"].id)


@pytest.mark.asyncio
async def test_unknown_target_kind(session, users):
    with pytest.raises(ValidationError):
        await votes.vote(session, 1, "debate", True, users["bob"].id)
