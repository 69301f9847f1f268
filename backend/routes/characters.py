"""Read-only character catalog."""

from fastapi import APIRouter, Depends

from backend.auth import get_caller_id, get_storage
from character_realm.errors import CharacterNotFound
from character_realm.storage import Storage

router = APIRouter()


@router.get("/characters")
async def list_characters(
    caller: str = Depends(get_caller_id),
    storage: Storage = Depends(get_storage),
):
    """Public, active characters ordered by name."""
    return storage.list_public_personas()


@router.get("/characters/{character_id}")
async def get_character(
    character_id: str,
    caller: str = Depends(get_caller_id),
    storage: Storage = Depends(get_storage),
):
    """A single active character."""
    persona = storage.get_persona(character_id)
    if persona is None or not persona.active:
        raise CharacterNotFound()
    return persona
