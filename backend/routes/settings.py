"""Health check and connection check endpoints."""

from fastapi import APIRouter

from rpg_narrator.llm import HttpLLM

from .models import CheckConnectionBody

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody):
    """Quick reachability check against an LLM provider URL."""
    provider_format = "openai" if body.provider_format == "openai" else "koboldcpp"
    llm = HttpLLM(body.provider_url, api_key=body.api_key, provider_format=provider_format)
    return {"ok": await llm.is_available()}
