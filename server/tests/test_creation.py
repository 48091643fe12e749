import pytest
from sqlalchemy import func, select

from debateforum.core.creation import create_debate, validate_debate_payload
from debateforum.core.exceptions import ValidationError
from debateforum.database.database import get_item_by_id
from debateforum.database.models import (
    Argument,
    Debate,
    DebateParticipant,
    DebateStatus,
    DebateTopic,
    DebateTopicType,
    Definition,
    DefinitionStatus,
    ParticipantRole,
    Reference,
    ReferenceType,
)
from factories import argument, debate_payload, reference


async def _row_counts(session_factory) -> dict:
    counts = {}
    async with session_factory() as session:
        for model in (Debate, DebateTopic, DebateParticipant, Argument, Reference, Definition):
            result = await session.execute(select(func.count()).select_from(model))
            counts[model.__name__] = result.scalar_one()
    return counts


@pytest.mark.asyncio
async def test_create_debate_writes_everything(session_factory, users):
    payload = debate_payload(
        topics=["POLITICS", "POLITICS", "SCIENCE"],
        initial_arguments=[
            argument(references=[reference("https://www.youtube.com/watch?v=x")]),
            argument(content="<p>A second opening argument</p>"),
        ],
        initial_definitions=[
            {"term": " car ", "definition": "A private motor vehicle", "context": ""}
        ],
    )
    async with session_factory() as session:
        created = await create_debate(session, users["alice"].id, payload)

    async with session_factory() as session:
        debate = await get_item_by_id(
            session,
            created.id,
            Debate,
            load_relationships=[
                "topics",
                "participants",
                "arguments.references",
                "definitions",
            ],
        )

    assert debate.status == DebateStatus.OPEN
    assert debate.creator_id == users["alice"].id
    assert (debate.current_turn_number, debate.current_turn_side) == (
        1,
        ParticipantRole.OPPOSER,
    )
    assert {t.topic for t in debate.topics} == {
        DebateTopicType.POLITICS,
        DebateTopicType.SCIENCE,
    }
    [participant] = debate.participants
    assert participant.role == ParticipantRole.PROPOSER
    assert participant.user_id == users["alice"].id

    assert len(debate.arguments) == 2
    assert all(a.turn_number == 1 for a in debate.arguments)
    assert all(a.participant_id == participant.id for a in debate.arguments)
    reference_types = sorted(r.type.value for a in debate.arguments for r in a.references)
    assert reference_types == [
        ReferenceType.ACADEMIC_PAPER.value,
        ReferenceType.VIDEO.value,
    ]

    [definition] = debate.definitions
    assert definition.term == "car"
    assert definition.context is None
    assert definition.status == DefinitionStatus.PROPOSED
    assert definition.proposer_id == users["alice"].id


@pytest.mark.asyncio
async def test_invalid_topic_creates_nothing(session_factory, users):
    before = await _row_counts(session_factory)

    async with session_factory() as session:
        with pytest.raises(ValidationError) as exc_info:
            await create_debate(
                session, users["alice"].id, debate_payload(topics=["invalid-topic"])
            )

    assert exc_info.value.status_code == 400
    assert "invalid-topic" in exc_info.value.message
    assert await _row_counts(session_factory) == before


@pytest.mark.asyncio
async def test_short_argument_rolls_back_whole_debate(session_factory, users):
    before = await _row_counts(session_factory)
    payload = debate_payload(
        initial_arguments=[argument(), argument(content="<b>tiny</b>")],
        initial_definitions=[{"term": "car", "definition": "A motor vehicle"}],
    )

    async with session_factory() as session:
        with pytest.raises(ValidationError, match="at least 10 characters"):
            await create_debate(session, users["alice"].id, payload)

    assert await _row_counts(session_factory) == before


@pytest.mark.asyncio
async def test_incomplete_definition_rolls_back(session_factory, users):
    before = await _row_counts(session_factory)
    payload = debate_payload(initial_definitions=[{"term": "car", "definition": " "}])

    async with session_factory() as session:
        with pytest.raises(ValidationError, match="both term and definition"):
            await create_debate(session, users["alice"].id, payload)

    assert await _row_counts(session_factory) == before


@pytest.mark.asyncio
async def test_multi_sided_debate_starts_with_proposers(session_factory, users):
    async with session_factory() as session:
        debate = await create_debate(
            session,
            users["alice"].id,
            debate_payload(format="MULTI_SIDED", max_participants=4),
        )

    assert debate.current_turn_side == ParticipantRole.PROPOSER
    assert debate.max_participants == 4


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"title": "  "}, "Title and at least one topic"),
        ({"topics": []}, "Title and at least one topic"),
        ({"initial_arguments": []}, "At least one initial argument"),
        ({"topics": ["SCIENCE", "nope", "also-nope"]}, "Invalid topics provided: nope, also-nope"),
    ],
)
def test_validate_debate_payload_rejects(overrides, message):
    with pytest.raises(ValidationError, match=message):
        validate_debate_payload(debate_payload(**overrides))


def test_validate_debate_payload_dedupes_topics():
    topics = validate_debate_payload(debate_payload(topics=["ARTS", "SPORTS", "ARTS"]))
    assert topics == [DebateTopicType.ARTS, DebateTopicType.SPORTS]
