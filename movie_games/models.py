"""Canonical template models.

Every pipeline stage after coercion works on these types, and nothing else.
Field names serialise to camelCase and are part of the public JSON contract,
so they must not be renamed.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EndingType = Literal["good", "bad", "neutral"]

OrphanReason = Literal["unreachable-from-start", "superseded-start"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        """Dump with camelCase keys; unset optionals are omitted, not null."""
        return self.model_dump(by_alias=True, exclude_none=True)


class AffinityEffect(CamelModel):
    """Relationship change attached to a choice."""

    character_id: str
    delta: int


class Choice(CamelModel):
    text: str
    next_node_id: str
    affinity_effect: AffinityEffect | None = None


class StoryNode(CamelModel):
    id: str
    content: str
    ending_key: str | None = None
    level: int | None = None
    # None = scene cast unknown; [] = explicitly nobody on screen
    characters: list[str] | None = None
    choices: list[Choice] = Field(default_factory=list)


class Ending(CamelModel):
    type: EndingType
    description: str = ""
    node_id: str | None = None


class Character(CamelModel):
    """A cast member. Keyed by `name` in Template.characters."""

    id: str
    name: str
    gender: str = "Unknown"
    age: int = 0
    role: str = ""
    background: str = ""
    avatar_path: str | None = None
    is_main: bool | None = None


class MetaInfo(CamelModel):
    logline: str = ""
    synopsis: str = ""
    target_runtime_minutes: int = 0
    genre: str = ""
    language: str = ""


class Template(CamelModel):
    """Root aggregate of one interactive movie."""

    project_id: str
    title: str
    version: str = "1.0.0"
    owner: str = "User"
    meta: MetaInfo = Field(default_factory=MetaInfo)
    nodes: dict[str, StoryNode] = Field(default_factory=dict)
    endings: dict[str, Ending] = Field(default_factory=dict)
    characters: dict[str, Character] = Field(default_factory=dict)
    background_image_base64: str | None = None
    request_id: str | None = None


class CharacterInput(CamelModel):
    """Cast entry as supplied by a user when requesting a generation."""

    name: str
    description: str = ""
    gender: str = ""
    is_main: bool = False


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------

class Finding(CamelModel):
    """Non-fatal observation made while ingesting a template."""

    kind: str
    path: str
    message: str


class Orphan(CamelModel):
    node_id: str
    reason: OrphanReason


class IngestResult(CamelModel):
    template: Template
    start: str
    orphans: list[Orphan] = Field(default_factory=list)
    findings: list[Finding] = Field(default_factory=list)
