"""Prompt helpers and account info proxied from the Leonardo API."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from cinegen.errors import UpstreamError

router = APIRouter()

# Set by main.py during lifespan (same pattern as generations.py)
_client = None


def set_client(client):
    global _client
    _client = client


class ImprovePromptRequest(BaseModel):
    prompt: str


def _require_client():
    if _client is None:
        raise HTTPException(status_code=503, detail="Leonardo client not initialized")
    return _client


def _upstream_failure(exc: UpstreamError) -> HTTPException:
    return HTTPException(
        status_code=502,
        detail={"error": exc.message, "upstream_status": exc.status_code},
    )


@router.post("/tools/improve-prompt")
async def improve_prompt(request: ImprovePromptRequest):
    client = _require_client()
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt must not be empty")
    try:
        result = await client.improve_prompt(request.prompt)
    except UpstreamError as exc:
        raise _upstream_failure(exc)
    improved = (
        result.get("prompt")
        or result.get("improvedPrompt")
        or (result.get("promptGeneration") or {}).get("prompt")
    )
    return {"original": request.prompt, "prompt": improved}


@router.get("/tools/random-prompt")
async def random_prompt():
    client = _require_client()
    try:
        result = await client.random_prompt()
    except UpstreamError as exc:
        raise _upstream_failure(exc)
    prompt = (
        result.get("prompt")
        or result.get("randomPrompt")
        or (result.get("promptGeneration") or {}).get("prompt")
    )
    return {"prompt": prompt}


@router.get("/tools/me")
async def account_info():
    """Account details (token balance, subscription) for the configured key."""
    client = _require_client()
    try:
        return await client.get_user_info()
    except UpstreamError as exc:
        raise _upstream_failure(exc)


@router.get("/tools/models")
async def platform_models():
    """Platform models available to the configured key."""
    client = _require_client()
    try:
        result = await client.list_platform_models()
    except UpstreamError as exc:
        raise _upstream_failure(exc)
    models = result.get("custom_models") or []
    return {
        "models": [
            {"id": m.get("id"), "name": m.get("name"), "description": m.get("description")}
            for m in models
            if isinstance(m, dict)
        ],
        "count": len(models),
    }
