"""JSON file storage.

All state is stored in JSON files under a configurable base directory.
There is no database or ORM; reads and writes go through plain helper
methods that load and dump pydantic models.

Directory layout:

    {base}/
      personas.json           <- list of Persona objects
      users.json              <- list of User objects
      friendships.json        <- list of Friendship edges
      config.json             <- app settings (llm connection, limits, templates)
      sessions/
        {id}.json             <- one-on-one Session, full message history
      groups/
        {id}.json             <- GroupSession, full message history

Sessions and groups are written whole (replace-on-write). Each carries a
`version` that `save_session` / `save_group` compare against the stored
copy before writing, so a writer holding a stale read gets ConflictError
instead of silently dropping someone else's messages.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from character_realm.errors import ConflictError, StoreError, ValidationError
from character_realm.models import (
    AppConfig,
    Friendship,
    GroupSession,
    Persona,
    Session,
    User,
    utc_now,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm": {
        "provider_url": "http://localhost:5001",
        "api_key": "",
        "provider_format": "koboldcpp",
        "model": "",
        "timeout": 60.0,
    },
    "limits": {
        "max_message_length": 1000,
        "group_context_messages": 50,
        "auto_chat_rounds": 3,
    },
    "prompt_templates": {
        "chat": "",
        "group": "",
    },
}


def new_id() -> str:
    return uuid.uuid4().hex


class Storage:
    def __init__(self, base_path: Path, config_defaults: dict[str, Any] | None = None) -> None:
        self._base = base_path
        self._sessions_root = base_path / "sessions"
        self._groups_root = base_path / "groups"
        self._sessions_root.mkdir(parents=True, exist_ok=True)
        self._groups_root.mkdir(parents=True, exist_ok=True)
        self._config_defaults = copy.deepcopy(_CONFIG_DEFAULTS)
        for section, values in (config_defaults or {}).items():
            self._config_defaults.setdefault(section, {}).update(values)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_json(self, path: Path) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read {path.name}: {e}") from e

    def _write_json(self, path: Path, data: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise StoreError(f"Cannot write {path.name}: {e}") from e

    def _load(self, model: type[M], path: Path) -> M | None:
        if not path.exists():
            return None
        try:
            return model.model_validate(self._read_json(path))
        except SchemaError as e:
            raise StoreError(f"Corrupt record {path.name}: {e}") from e

    def _load_list(self, model: type[M], filename: str) -> list[M]:
        path = self._base / filename
        if not path.exists():
            return []
        try:
            return [model.model_validate(item) for item in self._read_json(path)]
        except SchemaError as e:
            raise StoreError(f"Corrupt list {filename}: {e}") from e

    def _save_list(self, filename: str, items: list[BaseModel]) -> None:
        self._write_json(self._base / filename, [i.model_dump() for i in items])

    @staticmethod
    def _safe_name(record_id: str) -> str:
        # ids become filenames; refuse anything that could escape the directory
        if not record_id or os.sep in record_id or "/" in record_id or record_id.startswith("."):
            return ""
        return record_id

    # ------------------------------------------------------------------
    # Personas
    # ------------------------------------------------------------------

    def list_personas(self) -> list[Persona]:
        return self._load_list(Persona, "personas.json")

    def list_public_personas(self) -> list[Persona]:
        """Public, active personas ordered by name."""
        return sorted(
            (p for p in self.list_personas() if p.public and p.active),
            key=lambda p: p.name.lower(),
        )

    def get_persona(self, persona_id: str) -> Persona | None:
        for p in self.list_personas():
            if p.id == persona_id:
                return p
        return None

    def save_persona(self, persona: Persona) -> None:
        """Upsert a persona by id."""
        personas = self.list_personas()
        for i, p in enumerate(personas):
            if p.id == persona.id:
                personas[i] = persona
                break
        else:
            personas.append(persona)
        self._save_list("personas.json", personas)

    # ------------------------------------------------------------------
    # Users and friendships
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        return self._load_list(User, "users.json")

    def get_user(self, user_id: str) -> User | None:
        for u in self.list_users():
            if u.id == user_id:
                return u
        return None

    def save_user(self, user: User) -> None:
        """Upsert a user by id."""
        users = self.list_users()
        for i, u in enumerate(users):
            if u.id == user.id:
                users[i] = user
                break
        else:
            users.append(user)
        self._save_list("users.json", users)

    def save_friendship(self, friendship: Friendship) -> None:
        """Upsert the edge between two users (either direction)."""
        edges = self._load_list(Friendship, "friendships.json")
        pair = {friendship.user_id, friendship.friend_id}
        for i, f in enumerate(edges):
            if {f.user_id, f.friend_id} == pair:
                edges[i] = friendship
                break
        else:
            edges.append(friendship)
        self._save_list("friendships.json", edges)

    def list_friends(self, user_id: str) -> list[User]:
        """Active users with an accepted friendship to `user_id`, by name."""
        friend_ids: set[str] = set()
        for f in self._load_list(Friendship, "friendships.json"):
            if f.status != "accepted":
                continue
            if f.user_id == user_id:
                friend_ids.add(f.friend_id)
            elif f.friend_id == user_id:
                friend_ids.add(f.user_id)
        friend_ids.discard(user_id)
        return sorted(
            (u for u in self.list_users() if u.id in friend_ids and u.active),
            key=lambda u: u.name.lower(),
        )

    # ------------------------------------------------------------------
    # One-on-one sessions
    # ------------------------------------------------------------------

    def create_session(self, user_id: str, character_id: str) -> Session:
        session = Session(id=new_id(), user_id=user_id, character_id=character_id)
        self._write_json(self._sessions_root / f"{session.id}.json", session.model_dump())
        return session

    def get_session(self, session_id: str) -> Session | None:
        name = self._safe_name(session_id)
        if not name:
            return None
        return self._load(Session, self._sessions_root / f"{name}.json")

    def find_session(self, user_id: str, character_id: str) -> Session | None:
        """Most recently created session for a (user, character) pair."""
        found: Session | None = None
        for path in self._sessions_root.glob("*.json"):
            try:
                session = self._load(Session, path)
            except StoreError:
                logger.warning("skipping unreadable session file %s", path.name)
                continue
            if session is None or session.user_id != user_id or session.character_id != character_id:
                continue
            if found is None or session.created_at > found.created_at:
                found = session
        return found

    def save_session(self, session: Session) -> Session:
        """Replace the stored session if nobody wrote it since it was read.

        `session.version` must be the version that was read. Returns the
        stored copy with the version bumped.
        """
        stored = self.get_session(session.id)
        if stored is None:
            raise StoreError(f"Session {session.id} vanished before save")
        if stored.version != session.version:
            logger.warning(
                "version conflict session=%s read=%d stored=%d",
                session.id, session.version, stored.version,
            )
            raise ConflictError()
        updated = session.model_copy(update={"version": session.version + 1, "updated_at": utc_now()})
        self._write_json(self._sessions_root / f"{session.id}.json", updated.model_dump())
        return updated

    # ------------------------------------------------------------------
    # Group sessions
    # ------------------------------------------------------------------

    def create_group(self, group: GroupSession) -> GroupSession:
        self._write_json(self._groups_root / f"{group.id}.json", group.model_dump())
        return group

    def get_group(self, group_id: str) -> GroupSession | None:
        name = self._safe_name(group_id)
        if not name:
            return None
        return self._load(GroupSession, self._groups_root / f"{name}.json")

    def list_groups_for_user(self, user_id: str) -> list[GroupSession]:
        """Active groups that list `user_id`, most recently updated first."""
        groups: list[GroupSession] = []
        for path in self._groups_root.glob("*.json"):
            try:
                group = self._load(GroupSession, path)
            except StoreError:
                logger.warning("skipping unreadable group file %s", path.name)
                continue
            if group is not None and group.active and user_id in group.user_ids:
                groups.append(group)
        groups.sort(key=lambda g: g.updated_at, reverse=True)
        return groups

    def save_group(self, group: GroupSession) -> GroupSession:
        """Replace the stored group, with the same version rule as save_session."""
        stored = self.get_group(group.id)
        if stored is None:
            raise StoreError(f"Group {group.id} vanished before save")
        if stored.version != group.version:
            logger.warning(
                "version conflict group=%s read=%d stored=%d",
                group.id, group.version, stored.version,
            )
            raise ConflictError()
        updated = group.model_copy(update={"version": group.version + 1, "updated_at": utc_now()})
        self._write_json(self._groups_root / f"{group.id}.json", updated.model_dump())
        return updated

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def get_config(self) -> dict[str, Any]:
        """Read config, returning defaults merged with stored values."""
        config = copy.deepcopy(self._config_defaults)
        path = self._base / "config.json"
        if path.is_file():
            stored = self._read_json(path)
            for section, values in stored.items():
                if section in config and isinstance(values, dict):
                    config[section].update(values)
        return config

    def update_config(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge fields into config section-by-section and persist. Returns full config.

        The merged result must still match AppConfig; otherwise nothing is
        written and ValidationError names the first offending field.
        """
        config = self.get_config()
        for section, values in fields.items():
            if section not in config:
                continue
            if not isinstance(values, dict):
                raise ValidationError(f"Settings section {section} must be an object")
            config[section].update(values)
        try:
            config = AppConfig.model_validate(config).model_dump()
        except SchemaError as e:
            err = e.errors()[0]
            where = ".".join(str(part) for part in err["loc"])
            raise ValidationError(f"Invalid setting {where}: {err['msg']}") from e
        self._write_json(self._base / "config.json", config)
        return config
