"""Shared fixtures: an in-memory SQLite store and a few seeded users."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from debateforum.core.creation import create_debate
from debateforum.core.lifecycle import join_debate
from debateforum.database.database import create_all_tables
from debateforum.database.models import ParticipantRole, User
from factories import debate_payload


@pytest_asyncio.fixture
async def engine():
    # One shared connection, so every session sees the same in-memory database.
    db_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest_asyncio.fixture
async def users(session_factory) -> dict[str, User]:
    async with session_factory() as db_session:
        async with db_session.begin():
            created = {
                name: User(auth_id=f"test|{name}", name=name.capitalize())
                for name in ("alice", "bob", "carol")
            }
            db_session.add_all(created.values())
    return created


@pytest_asyncio.fixture
async def running_debate(session_factory, users):
    """A one-vs-one debate: alice proposed turn 1, bob joined as opposer."""
    async with session_factory() as db_session:
        debate = await create_debate(db_session, users["alice"].id, debate_payload())
    async with session_factory() as db_session:
        await join_debate(db_session, debate.id, users["bob"].id, ParticipantRole.OPPOSER)
    return debate
