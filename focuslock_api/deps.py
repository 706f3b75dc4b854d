"""Request-scoped access to the components wired in create_app()."""

from fastapi import Request

from focuslock.notifier import UserChannelHub
from focuslock.services import FocusLockService


def get_service(request: Request) -> FocusLockService:
    return request.app.state.service


def get_hub(request: Request) -> UserChannelHub:
    return request.app.state.hub
