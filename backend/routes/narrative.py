"""Narrative generation endpoints, rate limited per client IP."""

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from rpg_narrator.models import GenerationResult, SegmentKind
from rpg_narrator.pipeline.orchestrator import GenerationOrchestrator
from rpg_narrator.rate_limiter import RateLimiter, RateLimitResult, get_error_message

from .models import GenerateBody, InitialSceneBody

router = APIRouter()


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def _limit_headers(limiter: RateLimiter, result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limiter.max_requests),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_time)),
    }


def enforce_rate_limit(request: Request, response: Response) -> RateLimitResult:
    limiter: RateLimiter = request.app.state.rate_limiter
    result = limiter.check_limit(client_ip(request))
    headers = _limit_headers(limiter, result)
    if not result.allowed:
        raise HTTPException(429, get_error_message(result.reset_time), headers=headers)
    response.headers.update(headers)
    return result


def _orchestrator(request: Request) -> GenerationOrchestrator:
    return request.app.state.orchestrator


@router.post("/narrative/generate", dependencies=[Depends(enforce_rate_limit)])
async def generate(body: GenerateBody, request: Request) -> GenerationResult:
    """Generate one narrative segment; falls back to curated content when the LLM fails."""
    return await _orchestrator(request).generate_segment(body.request, world=body.world)


@router.post("/narrative/initial-scene", dependencies=[Depends(enforce_rate_limit)])
async def initial_scene(body: InitialSceneBody, request: Request) -> GenerationResult:
    """Generate the opening scene for a world."""
    return await _orchestrator(request).generate_initial_scene(
        body.world.id, body.character_ids, world=body.world
    )


@router.get("/narrative/fallback/{theme}")
async def fallback_summary(theme: str, request: Request):
    """Which curated content exists for a theme, by segment kind."""
    selector = _orchestrator(request).selector
    return {
        "theme": theme,
        "has_content": selector.has_content(theme),
        "counts": {kind.value: selector.content_count(theme, kind) for kind in SegmentKind},
    }
