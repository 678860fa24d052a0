"""FastAPI dependencies for database sessions, settings and the gateway client."""
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.config import Settings, settings
from donations.database import AsyncSessionLocal
from donations.integrations.mailer import Mailer


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_settings() -> Settings:
    """Application settings, loaded once at import."""
    return settings


def get_gateway_client(config: Settings = Depends(get_settings)) -> CybersourceAdapter:
    """
    Gateway client dependency.

    A new client is built per request because the request host is switched
    per form environment.
    """
    return CybersourceAdapter(config)


def get_mailer(config: Settings = Depends(get_settings)) -> Mailer:
    return Mailer(config)
