"""One human talking to one character.

Session lifecycle:
  initialize_session() looks the character up, then either resumes the
  newest session for the (user, character) pair (continued=True) or
  creates an empty one (continued=False). Sessions are never deleted here.

Turn flow (post_message), all under the session's lock:
  1. Load the session (SessionNotFound / ForbiddenError) and the persona,
     then validate the text.
  2. Assemble the prompt from the persona and the history *before* the
     new input.
  3. Generate and clean the reply.
  4. Save the whole history with the user message and the reply appended.

Nothing is written until step 4, so a failed generation leaves the stored
history exactly as it was and the caller can simply resend.
"""

from __future__ import annotations

import logging

from character_realm.errors import (
    CharacterNotFound,
    ForbiddenError,
    ProviderError,
    SessionNotFound,
    ValidationError,
)
from character_realm.events import EventSink, LoggingEventSink
from character_realm.llm import LLM, generate, llm_from_config
from character_realm.locks import SessionLocks
from character_realm.models import ChatReply, Message, Persona, Session, SessionStart
from character_realm.prompts import assemble
from character_realm.storage import Storage

logger = logging.getLogger(__name__)


def clip_text(text: str, max_length: int) -> str:
    """Strip the input and cut it to the configured length; reject empty text."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message text is required")
    return text[:max_length]


class ChatController:
    """Single-party session controller.

    Args:
        storage: Session/persona store.
        llm:     LLM callable. If None, one is built from the stored config
                 on every turn, so settings changes apply immediately.
        events:  Notification sink. Defaults to logging.
        locks:   Shared per-session locks.
    """

    def __init__(
        self,
        storage: Storage,
        llm: LLM | None = None,
        events: EventSink | None = None,
        locks: SessionLocks | None = None,
    ) -> None:
        self._storage = storage
        self._llm = llm
        self._events = events if events is not None else LoggingEventSink()
        self._locks = locks if locks is not None else SessionLocks()

    def _get_llm(self, config: dict) -> LLM:
        return self._llm if self._llm is not None else llm_from_config(config)

    def _active_persona(self, character_id: str) -> Persona:
        persona = self._storage.get_persona(character_id)
        if persona is None or not persona.active:
            raise CharacterNotFound()
        return persona

    def _owned_session(self, session_id: str, user_id: str) -> Session:
        session = self._storage.get_session(session_id)
        if session is None:
            raise SessionNotFound()
        if session.user_id != user_id:
            raise ForbiddenError("Chat session belongs to another user")
        return session

    async def initialize_session(self, user_id: str, character_id: str) -> SessionStart:
        """Resume the user's session with this character, or start one."""
        self._active_persona(character_id)
        async with self._locks.get(f"pair:{user_id}:{character_id}"):
            existing = self._storage.find_session(user_id, character_id)
            if existing is not None:
                logger.info("session continued id=%s user=%s character=%s",
                            existing.id, user_id, character_id)
                return SessionStart(session_id=existing.id, messages=existing.messages, continued=True)

            session = self._storage.create_session(user_id, character_id)

        logger.info("session created id=%s user=%s character=%s", session.id, user_id, character_id)
        self._events.emit("session.created", {
            "session_id": session.id,
            "user_id": user_id,
            "character_id": character_id,
        })
        return SessionStart(session_id=session.id, messages=[], continued=False)

    async def get_history(self, session_id: str, user_id: str) -> list[Message]:
        return self._owned_session(session_id, user_id).messages

    async def post_message(self, session_id: str, user_id: str, text: str) -> ChatReply:
        """Run one turn: append the user's message and the character's reply."""
        config = self._storage.get_config()
        # unknown ids fail here, before a lock entry exists for them
        self._owned_session(session_id, user_id)

        async with self._locks.get(session_id):
            session = self._owned_session(session_id, user_id)
            persona = self._active_persona(session.character_id)
            text = clip_text(text, config["limits"]["max_message_length"])

            user_msg = Message(role="user", content=text)
            prompt = assemble(
                persona, session.messages, text,
                template=config["prompt_templates"].get("chat") or None,
            )
            try:
                reply = await generate(
                    self._get_llm(config), "chat", prompt,
                    speaker=persona.name,
                    max_length=config["limits"]["max_message_length"],
                )
            except ProviderError:
                logger.exception("generation failed session=%s character=%s", session_id, persona.id)
                raise

            messages = [*session.messages, user_msg, Message(role="assistant", content=reply)]
            saved = self._storage.save_session(session.model_copy(update={"messages": messages}))

        logger.info("turn completed session=%s messages=%d", session_id, len(saved.messages))
        self._events.emit("session.message", {
            "session_id": session_id,
            "user_id": user_id,
            "character_id": persona.id,
            "count": len(saved.messages),
        })
        return ChatReply(reply=reply, history=saved.messages)
