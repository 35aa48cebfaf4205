import logging
from pathlib import Path

from fastapi import FastAPI

from backend.routes import router
from rpg_narrator.config import Settings, load_settings
from rpg_narrator.fallback.content import default_entries, load_entries
from rpg_narrator.fallback.selector import FallbackContentSelector
from rpg_narrator.llm import LLM, HttpLLM
from rpg_narrator.pipeline.backoff import from_name
from rpg_narrator.pipeline.orchestrator import GenerationOrchestrator
from rpg_narrator.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def build_selector(settings: Settings) -> FallbackContentSelector:
    entries = default_entries()
    path: Path | None = settings.fallback_content_path
    if path is not None:
        extra = load_entries(path)
        logger.info("loaded %d extra fallback entries from %s", len(extra), path)
        entries.extend(extra)
    return FallbackContentSelector(entries, history_size=settings.fallback_history_size)


def create_app(settings: Settings | None = None, llm: LLM | None = None) -> FastAPI:
    settings = settings or load_settings()
    if llm is None:
        llm = HttpLLM(
            provider_url=settings.provider_url,
            api_key=settings.api_key,
            provider_format=settings.provider_format,
            model=settings.model,
            timeout=settings.llm_timeout,
        )

    app = FastAPI(title="RPG Narrator")
    app.state.settings = settings
    app.state.llm = llm
    app.state.orchestrator = GenerationOrchestrator(
        llm,
        build_selector(settings),
        max_retries=settings.max_retries,
        backoff=from_name(settings.backoff, settings.backoff_base),
    )
    app.state.rate_limiter = RateLimiter.for_environment(
        settings.environment,
        max_requests=settings.rate_limit_max_requests,
        window_ms=settings.rate_limit_window_ms,
    )
    app.include_router(router, prefix="/api")
    return app
