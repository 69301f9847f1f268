"""Health check, settings, and connection check endpoints."""

import httpx
from fastapi import APIRouter, Depends

from backend.auth import get_caller_id, get_storage
from character_realm.storage import Storage

from .models import CheckConnectionBody

router = APIRouter()

# Probe path per provider format
_PROBE_PATHS = {
    "koboldcpp": "/api/v1/model",
    "openai": "/v1/models",
    "gemini": "/v1beta/models",
}

_MASK = "********"


def _masked(config: dict) -> dict:
    if config["llm"].get("api_key"):
        config["llm"]["api_key"] = _MASK
    return config


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody, caller: str = Depends(get_caller_id)):
    """Quick reachability check against an LLM provider URL."""
    path = _PROBE_PATHS.get(body.provider_format, _PROBE_PATHS["koboldcpp"])
    url = f"{body.provider_url.rstrip('/')}{path}"
    headers: dict[str, str] = {}
    if body.api_key:
        if body.provider_format == "gemini":
            headers["x-goog-api-key"] = body.api_key
        else:
            headers["Authorization"] = f"Bearer {body.api_key}"
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
        return {"ok": True}
    except httpx.HTTPError:
        return {"ok": False}


@router.get("/settings")
async def get_settings(
    caller: str = Depends(get_caller_id),
    storage: Storage = Depends(get_storage),
):
    """App settings (LLM connection, limits, prompt templates); API key masked."""
    return _masked(storage.get_config())


@router.patch("/settings")
async def update_settings(
    body: dict,
    caller: str = Depends(get_caller_id),
    storage: Storage = Depends(get_storage),
):
    """Update app settings (partial merge per section). Bad values are rejected with 400."""
    llm = body.get("llm")
    if isinstance(llm, dict) and llm.get("api_key") == _MASK:
        # the client echoed back the masked value; keep the stored key
        del llm["api_key"]
    return _masked(storage.update_config(body))
