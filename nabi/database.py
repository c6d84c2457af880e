"""Database engine, session factory and declarative base."""

import ssl

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from nabi.config import Settings, get_settings

settings = get_settings()


class Base(DeclarativeBase):
    """Declarative base for all models."""


def build_connect_args(settings: Settings) -> dict:
    """asyncpg connect args; production connections always use TLS."""
    if not settings.is_production or not settings.database_url.startswith("postgresql"):
        return {}

    context = ssl.create_default_context()
    if not settings.database_ssl_verify:
        # Managed Postgres hosts often serve certificates we cannot verify
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return {"ssl": context}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    connect_args=build_connect_args(settings),
)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)
