"""Core domain models.

Controllers and the storage adapter operate on these types. Pydantic is
used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

MAX_GROUP_USERS = 10
MAX_GROUP_CHARACTERS = 5

Role = Literal["user", "assistant", "system"]
SenderKind = Literal["user", "character", "system"]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Persona(BaseModel):
    """A character definition. Read-only for the conversation engine."""

    id: str
    name: str
    origin: str = ""  # content source, e.g. the saga or show
    description: str = ""
    personality: str = ""
    lore: str = ""  # scraped/derived world knowledge, preferred over background
    background: str = ""
    quotes: list[str] = Field(default_factory=list)
    dialogues: list[str] = Field(default_factory=list)
    image_url: str = ""
    active: bool = True
    public: bool = True


class User(BaseModel):
    """A human account, as seen by the chat engine."""

    id: str
    name: str
    avatar_url: str = ""
    active: bool = True


class Friendship(BaseModel):
    user_id: str
    friend_id: str
    status: Literal["pending", "accepted", "blocked"] = "pending"


class Message(BaseModel):
    """A single entry in a one-on-one session's append-only log."""

    role: Role
    content: str
    timestamp: str = Field(default_factory=utc_now)


class Session(BaseModel):
    """One human talking to one character."""

    id: str
    user_id: str
    character_id: str
    messages: list[Message] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    version: int = 0


class GroupMessage(BaseModel):
    """A single entry in a group session's append-only log."""

    role: Role
    content: str
    sender_id: str
    sender_kind: SenderKind
    sender_name: str
    timestamp: str = Field(default_factory=utc_now)


class GroupSession(BaseModel):
    """Humans and characters sharing one ordered message log."""

    id: str
    name: str
    creator_id: str
    user_ids: list[str] = Field(max_length=MAX_GROUP_USERS + 1)
    character_ids: list[str] = Field(min_length=1, max_length=MAX_GROUP_CHARACTERS)
    messages: list[GroupMessage] = Field(default_factory=list)
    active: bool = True
    auto_chatting: bool = False
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    version: int = 0


class Participant(BaseModel):
    """Display identity of a message sender (name + avatar)."""

    id: str
    kind: SenderKind
    name: str
    image: str = ""


class SessionStart(BaseModel):
    session_id: str
    messages: list[Message]
    continued: bool


class ChatReply(BaseModel):
    reply: str
    history: list[Message]


class LLMSettings(BaseModel):
    provider_url: str
    api_key: str = ""
    provider_format: Literal["koboldcpp", "openai", "gemini"] = "koboldcpp"
    model: str = ""
    timeout: float = Field(default=60.0, gt=0)


class LimitSettings(BaseModel):
    max_message_length: int = Field(default=1000, ge=1)
    group_context_messages: int = Field(default=50, ge=1)
    auto_chat_rounds: int = Field(default=3, ge=0, le=10)


class PromptTemplates(BaseModel):
    chat: str = ""
    group: str = ""


class AppConfig(BaseModel):
    """Shape of config.json. Checked on every settings update."""

    llm: LLMSettings
    limits: LimitSettings
    prompt_templates: PromptTemplates
