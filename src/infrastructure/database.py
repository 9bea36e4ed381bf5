import os
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import SQLModel
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.ext.asyncio.engine import create_async_engine, AsyncEngine
import structlog

# register tables on SQLModel.metadata
from src.UAA import models as _uaa_models  # noqa: F401
from src.models import queued_email as _queued_email  # noqa: F401

logger = structlog.get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./auth.db")

engine: AsyncEngine = create_async_engine(DATABASE_URL, echo=False)

# objects stay readable after commit; the services read ids and fields post-commit
SessionFactory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(db_engine: AsyncEngine = engine):
    try:
        async with db_engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)
    except Exception as e:
        logger.exception("db_init_failed", error=str(e))
        raise


@asynccontextmanager
async def get_session() -> AsyncSession:
    async with SessionFactory() as session:
        yield session
