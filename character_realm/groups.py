"""Group sessions: several humans and several characters sharing one log.

Turn flow (post_group_message), all under the group's lock:
  1. Load the group (GroupNotFound if missing or deactivated) and check
     that the sender is a member (ForbiddenError).
  2. Append the human message.
  3. For each character in the group's list order: assemble a prompt from
     the running log (which already holds the replies produced earlier in
     this turn), generate, append. The next character starts only after
     the previous reply is appended, so characters react to each other.
  4. While auto-chat is on, run `auto_chat_rounds` further rounds of step 3.
  5. Save the whole log.

A failure at any step leaves the stored group untouched.

Auto-chat:
  "start chat" / "stop chat" (or set_auto_chat()) flip the group's
  auto_chatting flag and append a system message. Turning it on also runs
  the auto rounds immediately.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from character_realm.chat import clip_text
from character_realm.errors import (
    ForbiddenError,
    GroupNotFound,
    ProviderError,
    ValidationError,
)
from character_realm.events import EventSink, LoggingEventSink
from character_realm.llm import LLM, generate, llm_from_config
from character_realm.locks import SessionLocks
from character_realm.models import (
    MAX_GROUP_CHARACTERS,
    MAX_GROUP_USERS,
    GroupMessage,
    GroupSession,
    Participant,
    Persona,
    SenderKind,
)
from character_realm.prompts import assemble_group
from character_realm.storage import Storage, new_id

logger = logging.getLogger(__name__)

START_COMMAND = "start chat"
STOP_COMMAND = "stop chat"

AUTO_CHAT_ON = "Auto-chat mode activated. Characters will now converse with each other automatically."
AUTO_CHAT_OFF = "Auto-chat mode deactivated. Characters will now only respond to user messages."


def _unique(ids: Sequence[str]) -> list[str]:
    """Drop duplicates and blanks, keep first-seen order."""
    seen: dict[str, None] = {}
    for i in ids:
        if i and i not in seen:
            seen[i] = None
    return list(seen)


class ParticipantDirectory:
    """Resolves (sender_id, sender_kind) to a display name and avatar.

    Lookups are memoized per instance; create one per request so a long
    log with a handful of senders costs a handful of store reads.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._cache: dict[tuple[str, str], Participant] = {}
        self.lookups = 0

    def resolve(self, sender_id: str, sender_kind: SenderKind) -> Participant:
        key = (sender_kind, sender_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if sender_kind == "system":
            found = Participant(id=sender_id, kind="system", name="System")
        elif sender_kind == "character":
            self.lookups += 1
            persona = self._storage.get_persona(sender_id)
            found = Participant(
                id=sender_id, kind="character",
                name=persona.name if persona else "Unknown Character",
                image=persona.image_url if persona else "",
            )
        else:
            self.lookups += 1
            user = self._storage.get_user(sender_id)
            found = Participant(
                id=sender_id, kind="user",
                name=user.name if user else "Unknown User",
                image=user.avatar_url if user else "",
            )
        self._cache[key] = found
        return found


class GroupController:
    """Multi-party session controller. Same arguments as ChatController."""

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

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def _member_group(self, group_id: str, user_id: str) -> GroupSession:
        group = self._storage.get_group(group_id)
        if group is None or not group.active:
            raise GroupNotFound()
        if user_id not in group.user_ids:
            raise ForbiddenError("You are not a member of this group")
        return group

    def _group_personas(self, group: GroupSession) -> list[Persona]:
        """Active personas of the group, in the group's dispatch order."""
        personas = []
        for character_id in group.character_ids:
            persona = self._storage.get_persona(character_id)
            if persona is None or not persona.active:
                logger.warning("group=%s skipping unavailable character=%s", group.id, character_id)
                continue
            personas.append(persona)
        return personas

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    async def create_group(
        self,
        creator_id: str,
        name: str,
        user_ids: Sequence[str],
        character_ids: Sequence[str],
    ) -> GroupSession:
        """Validate membership bounds and create an empty, active group.

        The creator is always the first human member.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required")

        character_ids = _unique(character_ids)
        user_ids = [u for u in _unique(user_ids) if u != creator_id]
        if not character_ids:
            raise ValidationError("At least one character is required")
        if len(character_ids) > MAX_GROUP_CHARACTERS:
            raise ValidationError(f"Maximum {MAX_GROUP_CHARACTERS} characters allowed")
        if len(user_ids) > MAX_GROUP_USERS:
            raise ValidationError(f"Maximum {MAX_GROUP_USERS} users allowed")

        for character_id in character_ids:
            persona = self._storage.get_persona(character_id)
            if persona is None or not persona.active:
                raise ValidationError("One or more characters are invalid or inactive")
        for user_id in user_ids:
            user = self._storage.get_user(user_id)
            if user is None or not user.active:
                raise ValidationError("One or more users are invalid or inactive")

        group = self._storage.create_group(GroupSession(
            id=new_id(),
            name=name,
            creator_id=creator_id,
            user_ids=[creator_id, *user_ids],
            character_ids=character_ids,
        ))
        logger.info("group created id=%s creator=%s users=%d characters=%d",
                    group.id, creator_id, len(group.user_ids), len(character_ids))
        self._events.emit("group.created", {
            "group_id": group.id,
            "creator_id": creator_id,
            "user_ids": group.user_ids,
            "character_ids": group.character_ids,
        })
        return group

    async def list_available_participants(self, user_id: str) -> dict[str, list[Participant]]:
        """Everything the user may put in a new group: public characters and friends."""
        characters = [
            Participant(id=p.id, kind="character", name=p.name, image=p.image_url)
            for p in self._storage.list_public_personas()
        ]
        friends = [
            Participant(id=u.id, kind="user", name=u.name, image=u.avatar_url)
            for u in self._storage.list_friends(user_id)
        ]
        return {"characters": characters, "friends": friends}

    async def list_groups(self, user_id: str) -> list[dict[str, Any]]:
        """The user's active groups, newest activity first, with member names."""
        directory = ParticipantDirectory(self._storage)
        summaries = []
        for group in self._storage.list_groups_for_user(user_id):
            summary = group.model_dump(exclude={"messages"})
            summary["character_names"] = [directory.resolve(c, "character").name for c in group.character_ids]
            summary["user_names"] = [directory.resolve(u, "user").name for u in group.user_ids]
            summary["character_count"] = len(group.character_ids)
            summary["user_count"] = len(group.user_ids)
            summaries.append(summary)
        return summaries

    async def get_group_view(self, group_id: str, user_id: str) -> dict[str, Any]:
        """Messages with sender avatars, plus the member lists."""
        group = self._member_group(group_id, user_id)
        directory = ParticipantDirectory(self._storage)
        messages = []
        for msg in group.messages:
            entry = msg.model_dump()
            entry["avatar"] = directory.resolve(msg.sender_id, msg.sender_kind).image
            messages.append(entry)
        return {
            "group": group.model_dump(exclude={"messages"}),
            "messages": messages,
            "characters": [directory.resolve(c, "character") for c in group.character_ids],
            "users": [directory.resolve(u, "user") for u in group.user_ids],
        }

    async def deactivate_group(self, group_id: str, user_id: str) -> GroupSession:
        """Soft-delete: only the creator may switch a group off."""
        self._member_group(group_id, user_id)
        async with self._locks.get(group_id):
            group = self._member_group(group_id, user_id)
            if group.creator_id != user_id:
                raise ForbiddenError("Only the group creator can deactivate it")
            saved = self._storage.save_group(group.model_copy(update={"active": False}))
        logger.info("group deactivated id=%s", group_id)
        self._events.emit("group.deactivated", {"group_id": group_id})
        return saved

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def _character_round(
        self,
        group: GroupSession,
        personas: Sequence[Persona],
        log: list[GroupMessage],
        user_names: Sequence[str],
        config: dict,
        auto_chat: bool,
    ) -> None:
        """Every character replies once, in order, appending to `log` as it goes."""
        limits = config["limits"]
        template = config["prompt_templates"].get("group") or None
        character_names = [p.name for p in personas]
        llm = self._get_llm(config)
        for persona in personas:
            window = log[-limits["group_context_messages"]:]
            prompt = assemble_group(
                persona, window, group.name, user_names, character_names,
                auto_chat=auto_chat, template=template,
            )
            try:
                reply = await generate(
                    llm, f"group:{persona.id}", prompt,
                    speaker=persona.name,
                    max_length=limits["max_message_length"],
                )
            except ProviderError:
                logger.exception("generation failed group=%s character=%s", group.id, persona.id)
                raise
            log.append(GroupMessage(
                role="assistant",
                content=reply,
                sender_id=persona.id,
                sender_kind="character",
                sender_name=persona.name,
            ))

    async def _auto_rounds(
        self,
        group: GroupSession,
        personas: Sequence[Persona],
        log: list[GroupMessage],
        user_names: Sequence[str],
        config: dict,
    ) -> None:
        for _ in range(config["limits"]["auto_chat_rounds"]):
            await self._character_round(group, personas, log, user_names, config, auto_chat=True)

    def _save_log(self, group: GroupSession, log: list[GroupMessage], **changes: Any) -> GroupSession:
        members = set(group.user_ids) | set(group.character_ids)
        for msg in log[len(group.messages):]:
            if msg.sender_kind != "system" and msg.sender_id not in members:
                raise ValidationError(f"Sender {msg.sender_id} is not a member of this group")
        return self._storage.save_group(group.model_copy(update={"messages": log, **changes}))

    async def post_group_message(self, group_id: str, sender_id: str, text: str) -> list[GroupMessage]:
        """Append a human message and every character's reply; return the full log."""
        config = self._storage.get_config()
        # unknown ids and non-members fail here, before a lock entry exists
        self._member_group(group_id, sender_id)
        text = clip_text(text, config["limits"]["max_message_length"])

        command = text.lower()
        if command in (START_COMMAND, STOP_COMMAND):
            return await self.set_auto_chat(group_id, sender_id, command == START_COMMAND)

        async with self._locks.get(group_id):
            group = self._member_group(group_id, sender_id)
            directory = ParticipantDirectory(self._storage)
            sender = directory.resolve(sender_id, "user")
            user_names = [directory.resolve(u, "user").name for u in group.user_ids]
            personas = self._group_personas(group)

            log = list(group.messages)
            log.append(GroupMessage(
                role="user",
                content=text,
                sender_id=sender_id,
                sender_kind="user",
                sender_name=sender.name,
            ))
            await self._character_round(group, personas, log, user_names, config, group.auto_chatting)
            if group.auto_chatting:
                await self._auto_rounds(group, personas, log, user_names, config)
            saved = self._save_log(group, log)

        added = len(saved.messages) - len(group.messages)
        logger.info("group turn completed id=%s added=%d", group_id, added)
        self._events.emit("group.message", {
            "group_id": group_id,
            "sender_id": sender_id,
            "recipients": [u for u in group.user_ids if u != sender_id],
            "count": added,
        })
        return saved.messages

    async def set_auto_chat(self, group_id: str, user_id: str, enabled: bool) -> list[GroupMessage]:
        """Switch auto-chat on or off; switching on runs the auto rounds right away."""
        config = self._storage.get_config()
        self._member_group(group_id, user_id)
        async with self._locks.get(group_id):
            group = self._member_group(group_id, user_id)
            log = list(group.messages)
            log.append(GroupMessage(
                role="system",
                content=AUTO_CHAT_ON if enabled else AUTO_CHAT_OFF,
                sender_id="system",
                sender_kind="system",
                sender_name="System",
            ))
            if enabled:
                directory = ParticipantDirectory(self._storage)
                user_names = [directory.resolve(u, "user").name for u in group.user_ids]
                await self._auto_rounds(group, self._group_personas(group), log, user_names, config)
            saved = self._save_log(group, log, auto_chatting=enabled)

        logger.info("group auto-chat id=%s enabled=%s", group_id, enabled)
        self._events.emit("group.auto_chat", {"group_id": group_id, "enabled": enabled})
        return saved.messages
