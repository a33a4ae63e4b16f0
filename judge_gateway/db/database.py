from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from judge_gateway.config import get_settings

Base = declarative_base()


def create_session_factory(database_url: str, echo: bool = False):
    engine = create_async_engine(database_url, echo=echo, future=True)
    session_factory = sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, session_factory


engine, AsyncSessionLocal = create_session_factory(get_settings().database_url)


async def init_models(bind=None):
    # Creates the execution log table when it does not exist yet
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
