"""Caller identity.

Authentication itself happens upstream (reverse proxy / identity
provider); by the time a request reaches us the caller's user id travels
in the X-User-Id header. We only check that it names an active user.
"""

from fastapi import Header, Request

from character_realm.chat import ChatController
from character_realm.errors import AuthError
from character_realm.groups import GroupController
from character_realm.storage import Storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_chats(request: Request) -> ChatController:
    return request.app.state.chats


def get_groups(request: Request) -> GroupController:
    return request.app.state.groups


def get_caller_id(request: Request, x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise AuthError()
    user = get_storage(request).get_user(x_user_id)
    if user is None or not user.active:
        raise AuthError("Unknown or inactive user")
    return user.id
