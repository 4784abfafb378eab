from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

settings = get_settings()

connect_args: dict[str, Any] = {}
if settings.database_url.startswith("mysql"):
    # Bounded row-lock waits: a blocked admission fails instead of hanging.
    connect_args["init_command"] = (
        f"SET SESSION innodb_lock_wait_timeout = {settings.lock_wait_timeout_seconds}"
    )

engine = create_async_engine(
    settings.database_url,
    echo=settings.echo_sql,
    pool_pre_ping=True,
    pool_recycle=3600,
    connect_args=connect_args,
)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
