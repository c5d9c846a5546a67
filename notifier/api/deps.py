"""API dependencies for dependency injection."""

import hmac
from collections.abc import Generator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlmodel import Session

from notifier.config import Settings, get_settings
from notifier.db.session import get_session
from notifier.delivery.registry import AdapterRegistry
from notifier.services.routing import ChannelRouter


def get_db_session() -> Generator[Session, None, None]:
    """Get database session dependency."""
    yield from get_session()


DBSession = Annotated[Session, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]


@lru_cache
def get_adapter_registry() -> AdapterRegistry:
    """Adapter registry built once from process settings."""
    return AdapterRegistry.from_settings(get_settings())


Registry = Annotated[AdapterRegistry, Depends(get_adapter_registry)]


def get_router(registry: Registry) -> ChannelRouter:
    return ChannelRouter(registry)


Router = Annotated[ChannelRouter, Depends(get_router)]


def verify_cron_secret(
    settings: AppSettings,
    x_cron_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Reject trigger calls without the shared cron secret."""
    expected = settings.CRON_SECRET
    if not expected or not x_cron_secret or not hmac.compare_digest(expected, x_cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing cron secret",
        )


CronAuth = Depends(verify_cron_secret)
