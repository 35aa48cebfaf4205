"""Core domain models.

Generation requests/results, curated fallback entries, and the save-status
types shared by the orchestrator, the fallback selector and the save
coordinator. Pydantic is used for validation and serialisation at every data
boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SegmentKind(str, Enum):
    """Category of a narrative beat."""

    SCENE = "scene"
    DIALOGUE = "dialogue"
    ACTION = "action"
    TRANSITION = "transition"
    INITIAL_SCENE = "initial-scene"
    CHOICE = "choice"


class ErrorKind(str, Enum):
    """Failure taxonomy shared by generation and persistence."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVICE_UNAVAILABLE = "service_unavailable"
    AUTH = "auth"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Read-only views of the surrounding application's state
# ---------------------------------------------------------------------------

class WorldView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    theme: str = ""


class CharacterView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    background: str = ""


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class GenerationContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    theme: str = ""  # genre of the world, e.g. "fantasy"
    tags: list[str] = Field(default_factory=list)
    recent_segments: list[str] = Field(default_factory=list)
    session_id: str | None = None
    world_id: str | None = None
    character_ids: list[str] = Field(default_factory=list)


class GenerationParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_length: int | None = Field(default=None, gt=0)
    include_choices: bool = False
    tone: str | None = None


class GenerationRequest(BaseModel):
    """One request for a narrative beat. Immutable for the lifetime of its attempts."""

    model_config = ConfigDict(frozen=True)

    segment_kind: SegmentKind = SegmentKind.SCENE
    context: GenerationContext = Field(default_factory=GenerationContext)
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)


class GenerationAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int  # 0 for the first call, n for the n-th retry
    timestamp: datetime
    outcome: Literal["success", "failure"]
    error_kind: ErrorKind | None = None
    error_message: str | None = None


class Choice(BaseModel):
    text: str
    outcome: str | None = None  # hint of what happens if picked
    tags: list[str] = Field(default_factory=list)


class GeneratedContent(BaseModel):
    """Structured output a generation collaborator may return instead of plain text."""

    content: str
    choices: list[Choice] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class GenerationMetadata(BaseModel):
    retry_attempts: int = 0
    attempts: list[GenerationAttempt] = Field(default_factory=list)
    content_id: str | None = None  # id of the fallback entry served, if any
    world_id: str | None = None
    character_ids: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


class GenerationResult(BaseModel):
    content: str
    is_ai_generated: bool
    fallback_reason: ErrorKind | None = None
    segment_kind: SegmentKind
    tags: list[str] = Field(default_factory=list)
    choices: list[Choice] | None = None
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)

    @model_validator(mode="after")
    def _reason_iff_fallback(self) -> GenerationResult:
        if self.is_ai_generated and self.fallback_reason is not None:
            raise ValueError("AI-generated results carry no fallback_reason")
        if not self.is_ai_generated and self.fallback_reason is None:
            raise ValueError("fallback results must carry a fallback_reason")
        return self


# ---------------------------------------------------------------------------
# Curated fallback content
# ---------------------------------------------------------------------------

class FallbackContentEntry(BaseModel):
    """A curated, pre-written beat. Belongs to exactly one (theme, kind) bucket."""

    model_config = ConfigDict(frozen=True)

    id: str
    theme: str
    kind: SegmentKind
    body: str
    tags: tuple[str, ...] = ()
    choices: tuple[Choice, ...] = ()
    requires_tags: tuple[str, ...] = ()  # context must carry all of these
    excludes_tags: tuple[str, ...] = ()  # context must carry none of these


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class SaveTrigger(str, Enum):
    PERIODIC = "periodic"
    SCENE_CHANGE = "scene-change"
    PLAYER_CHOICE = "player-choice"
    MANUAL = "manual"


class SaveState(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class SaveStatus(BaseModel):
    """Observable state of the save coordinator. Only the coordinator mutates it."""

    state: SaveState = SaveState.IDLE
    last_save_time: datetime | None = None
    total_saves: int = 0
    error_message: str | None = None
    retryable: bool = False
    last_reason: SaveTrigger | None = None
    coalesced_reasons: list[SaveTrigger] = Field(default_factory=list)


class SaveOutcome(BaseModel):
    """What happened to one trigger_save() call."""

    reason: SaveTrigger
    coalesced: bool = False  # joined a save that was already in flight
    joined_reason: SaveTrigger | None = None
    skipped: bool = False  # auto-save disabled
    status: SaveStatus


class SessionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    status: str = "active"


class GameStateSnapshot(BaseModel):
    """Point-in-time copy of session state. Opaque to the core beyond `session`."""

    model_config = ConfigDict(frozen=True)

    session: SessionInfo
    world: Any = None
    character: Any = None
    narrative: Any = None
    journal: Any = None
    captured_at: datetime = Field(default_factory=utcnow)
