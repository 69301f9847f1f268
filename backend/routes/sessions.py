"""One-on-one chat session endpoints."""

from fastapi import APIRouter, Depends

from backend.auth import get_caller_id, get_chats
from character_realm.chat import ChatController

from .models import MessageBody, StartSessionBody

router = APIRouter()


@router.post("/sessions")
async def start_session(
    body: StartSessionBody,
    caller: str = Depends(get_caller_id),
    chats: ChatController = Depends(get_chats),
):
    """Resume the caller's session with a character, or create one."""
    return await chats.initialize_session(caller, body.character_id)


@router.get("/sessions/{session_id}/messages")
async def get_messages(
    session_id: str,
    caller: str = Depends(get_caller_id),
    chats: ChatController = Depends(get_chats),
):
    """Full message history of a session the caller owns."""
    return {"messages": await chats.get_history(session_id, caller)}


@router.post("/sessions/{session_id}/messages")
async def post_message(
    session_id: str,
    body: MessageBody,
    caller: str = Depends(get_caller_id),
    chats: ChatController = Depends(get_chats),
):
    """Send a message and get the character's reply plus the full history."""
    return await chats.post_message(session_id, caller, body.text)
