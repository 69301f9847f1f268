import pytest

from character_realm.events import MemoryEventSink
from character_realm.models import Friendship, Persona, User
from character_realm.storage import Storage


class LLMSequence:
    """Record LLM calls in order and return canned responses.

    A response that is an exception instance is raised instead of returned.
    Once the script runs out, every call returns "".
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def __call__(self, stage, prompt):
        idx = len(self.calls)
        self.calls.append((stage, prompt))
        if idx >= len(self.responses):
            return ""
        response = self.responses[idx]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def prompts(self):
        return [prompt for _, prompt in self.calls]

    @property
    def stages(self):
        return [stage for stage, _ in self.calls]


PERSONAS = [
    Persona(
        id="aria", name="Aria", origin="Skybound Saga",
        description="A sky-ship navigator.",
        personality="Curious and quick-witted.",
        lore="Islands drift on the Tides.",
        background="Grew up on a cloud farm.",
        quotes=["The sky never lies."],
        dialogues=["Aria: Hold the wheel steady."],
        image_url="/img/aria.png",
    ),
    Persona(id="brom", name="Brom", origin="Skybound Saga", image_url="/img/brom.png"),
    Persona(id="mira", name="Mira", origin="The Hollow Library"),
    Persona(id="ghost", name="Ghost", active=False),
    Persona(id="secret", name="Secret", public=False),
]

USERS = [
    User(id="sam", name="Sam", avatar_url="/img/sam.png"),
    User(id="riley", name="Riley"),
    User(id="jordan", name="Jordan"),
    User(id="zed", name="Zed", active=False),
]


@pytest.fixture
def store(tmp_path):
    """A Storage seeded with personas, users and friendships."""
    s = Storage(tmp_path / "data")
    for p in PERSONAS:
        s.save_persona(p)
    for u in USERS:
        s.save_user(u)
    s.save_friendship(Friendship(user_id="sam", friend_id="riley", status="accepted"))
    s.save_friendship(Friendship(user_id="zed", friend_id="sam", status="accepted"))
    s.save_friendship(Friendship(user_id="sam", friend_id="jordan", status="pending"))
    return s


@pytest.fixture
def events():
    return MemoryEventSink()


@pytest.fixture
def scripted_llm():
    """Factory: scripted_llm(["reply 1", "reply 2"]) -> LLMSequence."""
    return LLMSequence
