from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from libs.db.config import AsyncSessionLocal


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    FastAPI dependency returning the shared session factory.

    Services open their own transaction scopes from it instead of receiving a
    request-wide session, so a unit of work can commit or roll back as a whole.
    """
    return AsyncSessionLocal
