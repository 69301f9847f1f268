"""Create demo characters, users and friendships for development/testing."""

import shutil

from character_realm.models import Friendship, Persona, User
from character_realm.storage import Storage

DEMO_PERSONAS = [
    Persona(
        id="aria",
        name="Aria",
        origin="Skybound Saga",
        description="A sky-ship navigator who charts routes between floating islands.",
        personality="Curious, quick-witted, fiercely loyal to her crew.",
        lore="The floating islands drift on wind currents called the Tides; "
        "navigators read them from the color of the clouds.",
        quotes=["The sky never lies, but it rarely tells the whole truth."],
        dialogues=[
            "Aria: Hold the wheel steady. The Tides shift at dusk.",
            "Aria: You've never seen a cloud-whale? Then look up, quickly!",
        ],
    ),
    Persona(
        id="brom",
        name="Brom",
        origin="Skybound Saga",
        description="The gruff ship's engineer of the Windlass.",
        personality="Grumbling, practical, secretly sentimental.",
        background="Thirty years keeping sky-engines alive with scrap and stubbornness.",
        dialogues=["Brom: If it's rattling, it's working. If it's quiet, run."],
    ),
    Persona(
        id="mira",
        name="Mira",
        origin="The Hollow Library",
        description="A librarian who remembers every book ever burned.",
        personality="Soft-spoken, precise, occasionally ominous.",
    ),
]

DEMO_USERS = [
    User(id="sam", name="Sam"),
    User(id="riley", name="Riley"),
    User(id="jordan", name="Jordan"),
]

DEMO_FRIENDSHIPS = [
    Friendship(user_id="sam", friend_id="riley", status="accepted"),
    Friendship(user_id="jordan", friend_id="sam", status="pending"),
]


def create_demo_data(storage: Storage) -> None:
    """Wipe existing sessions/groups and seed the demo catalog."""
    for sub in ("sessions", "groups"):
        path = storage.base_path / sub
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True, exist_ok=True)

    for persona in DEMO_PERSONAS:
        storage.save_persona(persona)
    for user in DEMO_USERS:
        storage.save_user(user)
    for friendship in DEMO_FRIENDSHIPS:
        storage.save_friendship(friendship)
