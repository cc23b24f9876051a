# catalog_access/dependencies.py
"""
FastAPI dependencies for the collaborators stored on ``app.state``.

create_app() puts settings, the email sender and the rate limiters on
app.state, so tests can swap any of them without monkeypatching modules.
"""
from fastapi import Depends, Request

from catalog_access.core.config import Settings
from catalog_access.core.email_client import EmailSender
from catalog_access.core.rate_limit import SlidingWindowRateLimiter


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def get_access_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.access_limiter


def get_login_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.login_limiter


def get_request_origin(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> str:
    """Public origin for links: BASE_URL if configured, else the request's own."""
    if settings.BASE_URL:
        return settings.BASE_URL.rstrip("/")
    return str(request.base_url).rstrip("/")
