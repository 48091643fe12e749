from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker, selectinload
from sqlalchemy.exc import SQLAlchemyError

from debateforum.database.models import Base
import logging
import os
import dotenv

logger = logging.getLogger(__name__)

dotenv.load_dotenv()
DATABASE_HOST = os.environ.get("DATABASE_HOST", "localhost")
DATABASE_PORT = os.environ.get("DATABASE_PORT", "5432")
DATABASE_USER = os.environ.get("DATABASE_USER", "user")
DATABASE_PASSWORD = os.environ.get("DATABASE_PASSWORD", "password")
DATABASE_NAME = os.environ.get("DATABASE_NAME", "dbname")
DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DATABASE_USER}:{DATABASE_PASSWORD}@{DATABASE_HOST}:{DATABASE_PORT}/{DATABASE_NAME}",
)
DATABASE_ECHO = os.environ.get("DATABASE_ECHO", "false").lower() == "true"


def create_session_factory(database_url: str = DATABASE_URL, echo: bool = DATABASE_ECHO):
    engine = create_async_engine(database_url, echo=echo)
    return engine, sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine, async_session = create_session_factory()


def _loader_options(model_class, load_relationships: list[str] | None) -> list:
    """Build selectinload options; dotted paths load nested relationships."""
    options = []
    for path in load_relationships or []:
        current = model_class
        loader = None
        for name in path.split("."):
            if not hasattr(current, name):
                logger.warning(
                    f"Relationship '{name}' not found in model {current.__name__}"
                )
                loader = None
                break
            attr = getattr(current, name)
            loader = selectinload(attr) if loader is None else loader.selectinload(attr)
            current = attr.property.mapper.class_
        if loader is not None:
            options.append(loader)
    return options


async def create_item(
    session: AsyncSession, item_data: dict, model_class, commit: bool = True
):
    try:
        db_item = model_class(**item_data)
        session.add(db_item)
        if commit:
            await session.commit()
            await session.refresh(db_item)
        else:
            await session.flush()
        return db_item
    except SQLAlchemyError as e:
        if commit:
            await session.rollback()
        logger.error(f"Error creating {model_class.__name__}: {e}")
        raise


async def get_item_by_id(
    session: AsyncSession,
    item_id: int,
    model_class,
    load_relationships: list[str] = None,
    for_update: bool = False,
):
    try:
        stmt = select(model_class)
        if load_relationships:
            stmt = stmt.options(*_loader_options(model_class, load_relationships))
        stmt = stmt.where(model_class.id == item_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Error getting {model_class.__name__} by ID {item_id}: {e}")
        raise


async def get_items_by_filters(
    session: AsyncSession,
    model_class,
    skip: int = 0,
    limit: int | None = 100,
    load_relationships: list[str] = None,
    order_by=None,
    **filters,
) -> list:
    try:
        stmt = select(model_class)
        for column_name, value in filters.items():
            if hasattr(model_class, column_name):
                stmt = stmt.where(getattr(model_class, column_name) == value)
            else:
                logger.warning(
                    f"Filter key '{column_name}' not found in model {model_class.__name__}"
                )

        if load_relationships:
            stmt = stmt.options(*_loader_options(model_class, load_relationships))
        if order_by is not None:
            stmt = stmt.order_by(order_by)

        stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()
    except SQLAlchemyError as e:
        logger.error(f"Error getting {model_class.__name__} by filters: {e}")
        raise


async def get_first_by_filters(session: AsyncSession, model_class, **filters):
    items = await get_items_by_filters(session, model_class, limit=1, **filters)
    return items[0] if items else None


async def update_item(
    session: AsyncSession,
    item_id: int,
    update_data: dict,
    model_class,
    commit: bool = True,
):
    try:
        db_item = await get_item_by_id(session, item_id, model_class)
        if db_item is None:
            return None

        for key, value in update_data.items():
            if hasattr(db_item, key):
                setattr(db_item, key, value)
            else:
                logger.warning(
                    f"Attribute '{key}' not found in model {model_class.__name__} during update."
                )

        if commit:
            await session.commit()
            await session.refresh(db_item)
        else:
            await session.flush()
        return db_item
    except SQLAlchemyError as e:
        if commit:
            await session.rollback()
        logger.error(f"Error updating {model_class.__name__} with ID {item_id}: {e}")
        raise


async def delete_item(
    session: AsyncSession, item_id: int, model_class, commit: bool = True
) -> bool:
    try:
        db_item = await get_item_by_id(session, item_id, model_class)
        if db_item is None:
            return False
        await session.delete(db_item)
        if commit:
            await session.commit()
        else:
            await session.flush()
        return True
    except SQLAlchemyError as e:
        if commit:
            await session.rollback()
        logger.error(f"Error deleting {model_class.__name__} with ID {item_id}: {e}")
        raise


async def create_all_tables(db_engine=None):
    db_engine = db_engine or engine
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
