"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from rpg_narrator.models import GenerationRequest, WorldView


class GenerateBody(BaseModel):
    request: GenerationRequest
    world: WorldView | None = None


class InitialSceneBody(BaseModel):
    world: WorldView
    character_ids: list[str] = Field(default_factory=list)


class CheckConnectionBody(BaseModel):
    provider_url: str
    api_key: str = ""
    provider_format: str = "koboldcpp"
