"""Pydantic request models for API endpoints (camelCase on the wire)."""

from typing import Any

from pydantic import Field

from movie_games.models import CamelModel, CharacterInput


class LLMOverrides(CamelModel):
    """Optional per-request model settings; `model` needs an own `apiKey`."""

    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None

    @property
    def own_credentials(self) -> bool:
        return bool((self.api_key or "").strip())


class GenerateBody(LLMOverrides):
    mode: str = "wizard"
    theme: str | None = None
    free_input: str | None = None
    synopsis: str | None = None
    genre: list[str] | None = None
    characters: list[CharacterInput] | None = None
    language: str | None = None
    min_nodes: int | None = None
    max_nodes: int | None = None
    min_endings: int | None = None
    max_endings: int | None = None
    size: str | None = None


class ExpandWorldviewBody(LLMOverrides):
    theme: str
    synopsis: str | None = None
    genre: list[str] | None = None
    language: str | None = None


class ExpandCharacterBody(LLMOverrides):
    theme: str
    worldview: str
    synopsis: str | None = None
    existing_characters: list[CharacterInput] = Field(default_factory=list)
    genre: list[str] | None = None
    language: str | None = None


class ImportBody(CamelModel):
    # raw, loosely typed template; shapes are resolved by ingestion
    template: Any
    language: str | None = None


class UpdateBody(CamelModel):
    id: str
    template: Any
    source: str | None = None


class DeleteBody(CamelModel):
    id: str


class ShareBody(CamelModel):
    id: str
    shared: bool


class RecordsBody(CamelModel):
    ids: list[str] = Field(default_factory=list)
