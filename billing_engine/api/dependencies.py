"""Dependency injection for FastAPI endpoints"""

from typing import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from billing_engine.config import Settings, settings
from billing_engine.infrastructure.clients.notifications import NotificationClient


def get_db(request: Request) -> Generator[Session, None, None]:
    """Session from the factory the application was built with"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_settings(request: Request) -> Settings:
    """Settings the application was built with"""
    return getattr(request.app.state, "settings", settings)


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_notification_client(config: Settings = Depends(get_settings)) -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient(
        webhook_url=config.notification_webhook_url,
        max_retries=config.webhook_max_retries,
        backoff_base=config.webhook_backoff_base,
    )
