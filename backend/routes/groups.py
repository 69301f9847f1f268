"""Group chat endpoints."""

from fastapi import APIRouter, Depends

from backend.auth import get_caller_id, get_groups
from character_realm.groups import GroupController

from .models import AutoChatBody, CreateGroupBody, MessageBody

router = APIRouter()


@router.get("/groups")
async def list_groups(
    caller: str = Depends(get_caller_id),
    groups: GroupController = Depends(get_groups),
):
    """Active groups the caller belongs to, most recently active first."""
    return {"groups": await groups.list_groups(caller)}


@router.post("/groups")
async def create_group(
    body: CreateGroupBody,
    caller: str = Depends(get_caller_id),
    groups: GroupController = Depends(get_groups),
):
    """Create a group with 1-5 characters and up to 10 other users."""
    group = await groups.create_group(caller, body.name, body.user_ids, body.character_ids)
    return {"group": group}


@router.get("/groups/available")
async def available_participants(
    caller: str = Depends(get_caller_id),
    groups: GroupController = Depends(get_groups),
):
    """Characters and friends the caller can add to a group."""
    available = await groups.list_available_participants(caller)
    return {"characters": available["characters"], "users": available["friends"]}


@router.get("/groups/{group_id}")
async def get_group(
    group_id: str,
    caller: str = Depends(get_caller_id),
    groups: GroupController = Depends(get_groups),
):
    """Group messages (with sender avatars), characters and users."""
    return await groups.get_group_view(group_id, caller)


@router.post("/groups/{group_id}/messages")
async def post_group_message(
    group_id: str,
    body: MessageBody,
    caller: str = Depends(get_caller_id),
    groups: GroupController = Depends(get_groups),
):
    """Send a message; every character in the group replies in turn."""
    return {"messages": await groups.post_group_message(group_id, caller, body.text)}


@router.patch("/groups/{group_id}/auto-chat")
async def set_auto_chat(
    group_id: str,
    body: AutoChatBody,
    caller: str = Depends(get_caller_id),
    groups: GroupController = Depends(get_groups),
):
    """Turn auto-chat on or off."""
    return {"messages": await groups.set_auto_chat(group_id, caller, body.enabled)}


@router.delete("/groups/{group_id}")
async def deactivate_group(
    group_id: str,
    caller: str = Depends(get_caller_id),
    groups: GroupController = Depends(get_groups),
):
    """Deactivate a group (creator only)."""
    await groups.deactivate_group(group_id, caller)
    return {"ok": True}
