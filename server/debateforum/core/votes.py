"""Voting on arguments and definitions.

A user holds at most one vote per target. Submitting the same support
value again removes the vote, submitting the other value flips it.
"""

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from debateforum.core.exceptions import NotFoundError, ValidationError
from debateforum.core.notifications import (
    build_notification,
    dispatch_notifications,
    notification_metadata,
    side_effect_session,
)
from debateforum.database.database import (
    create_item,
    delete_item,
    get_first_by_filters,
    get_item_by_id,
    update_item,
)
from debateforum.database.models import (
    Argument,
    ArgumentVote,
    Definition,
    DefinitionVote,
    NotificationType,
    User,
)

logger = logging.getLogger(__name__)


class VoteState(enum.Enum):
    NO_VOTE = "NO_VOTE"
    UPVOTED = "UPVOTED"
    DOWNVOTED = "DOWNVOTED"


def vote_state(vote) -> VoteState:
    if vote is None:
        return VoteState.NO_VOTE
    return VoteState.UPVOTED if vote.support else VoteState.DOWNVOTED


def next_vote_state(current: VoteState, support: bool) -> VoteState:
    requested = VoteState.UPVOTED if support else VoteState.DOWNVOTED
    if current == requested:
        return VoteState.NO_VOTE
    return requested


@dataclass
class VoteResult:
    success: bool
    vote: ArgumentVote | DefinitionVote | None
    state: VoteState


class ArgumentTarget:
    kind = "argument"
    vote_model = ArgumentVote
    target_field = "argument_id"
    notification_type = NotificationType.ARGUMENT_VOTE

    async def load_target(self, session: AsyncSession, target_id: int) -> Argument | None:
        return await get_item_by_id(session, target_id, Argument)

    def author_id_of(self, argument: Argument) -> int:
        return argument.author_id

    def notification_for(
        self, argument: Argument, voter: User | None, support: bool
    ) -> dict:
        vote_type = "supported" if support else "opposed"
        user_name = (voter.name if voter else None) or "Someone"
        return build_notification(
            self.notification_type,
            user_id=argument.author_id,
            title=f"Argument {vote_type}",
            message=f"{user_name} {vote_type} your argument",
            link=f"/debates/{argument.debate_id}?tab=arguments#argument-{argument.id}",
            actor_id=voter.id if voter else None,
            debate_id=argument.debate_id,
            argument_id=argument.id,
            metadata=notification_metadata(
                self.notification_type,
                argumentId=argument.id,
                voteType=vote_type,
                turnNumber=argument.turn_number,
            ),
        )


class DefinitionTarget:
    kind = "definition"
    vote_model = DefinitionVote
    target_field = "definition_id"
    notification_type = NotificationType.DEFINITION_VOTE

    async def load_target(
        self, session: AsyncSession, target_id: int
    ) -> Definition | None:
        return await get_item_by_id(session, target_id, Definition)

    def author_id_of(self, definition: Definition) -> int:
        return definition.proposer_id

    def notification_for(
        self, definition: Definition, voter: User | None, support: bool
    ) -> dict:
        vote_type = "supported" if support else "opposed"
        user_name = (voter.name if voter else None) or "Someone"
        return build_notification(
            self.notification_type,
            user_id=definition.proposer_id,
            title=f"Definition {vote_type}",
            message=f'{user_name} {vote_type} your definition of "{definition.term}"',
            link=f"/debates/{definition.debate_id}?tab=definitions",
            actor_id=voter.id if voter else None,
            debate_id=definition.debate_id,
            metadata=notification_metadata(
                self.notification_type,
                definitionId=definition.id,
                term=definition.term,
                support=support,
            ),
        )


VOTE_TARGETS = {
    ArgumentTarget.kind: ArgumentTarget(),
    DefinitionTarget.kind: DefinitionTarget(),
}


def target_for(kind: str):
    try:
        return VOTE_TARGETS[kind]
    except KeyError:
        raise ValidationError(f"Unknown vote target: {kind}")


async def _apply_vote(session: AsyncSession, target, target_id, user_id, support):
    model = target.vote_model
    existing = await get_first_by_filters(
        session, model, user_id=user_id, **{target.target_field: target_id}
    )
    if existing is None:
        return await create_item(
            session,
            {target.target_field: target_id, "user_id": user_id, "support": support},
            model,
            commit=False,
        )
    if existing.support == support:
        await delete_item(session, existing.id, model, commit=False)
        return None
    return await update_item(
        session, existing.id, {"support": support}, model, commit=False
    )


async def vote(
    session: AsyncSession, target_id: int, kind: str, support: bool, user_id: int
) -> VoteResult:
    target = target_for(kind)

    async with session.begin():
        item = await target.load_target(session, target_id)
        if item is None:
            raise NotFoundError(f"{kind.capitalize()} not found")
        author_id = target.author_id_of(item)

    try:
        async with session.begin():
            result = await _apply_vote(session, target, target_id, user_id, support)
    except IntegrityError:
        # Another request from the same user inserted first; apply on top of it.
        logger.info(
            f"Concurrent {kind} vote by user {user_id} on {target_id}, retrying"
        )
        async with session.begin():
            result = await _apply_vote(session, target, target_id, user_id, support)

    state = vote_state(result)
    if author_id != user_id:
        await _notify_author(session, target, target_id, user_id, support)

    return VoteResult(success=True, vote=result, state=state)


async def _notify_author(session: AsyncSession, target, target_id, user_id, support):
    try:
        async with side_effect_session(session) as notify_session:
            async with notify_session.begin():
                item = await target.load_target(notify_session, target_id)
                voter = await get_item_by_id(notify_session, user_id, User)
                notification = target.notification_for(item, voter, support)
    except Exception as e:
        logger.error(f"Failed to create notification: {type(e).__name__} - {e}")
        return
    await dispatch_notifications(session, [notification])
