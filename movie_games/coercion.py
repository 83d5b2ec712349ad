"""Type coercion for raw template input.

LLM output and imported files disagree on shapes: text fields arrive as a
string or a list of strings, `characters` as a map or a list, node content
bare or wrapped in `{text, notes}`. Each known path is resolved exactly once
here into the canonical models; every other stage sees only those.

An unrecognised shape at a known path raises MalformedInput naming the path.
Nothing is guessed.
"""

from __future__ import annotations

import json
import logging
import math
import uuid
from collections.abc import Mapping
from typing import Any

from movie_games.errors import DuplicateNodeId, MalformedInput
from movie_games.models import (
    AffinityEffect,
    Character,
    CharacterInput,
    Choice,
    Ending,
    MetaInfo,
    StoryNode,
    Template,
)
from movie_games.node_ids import END_TRANSITION, canonical_ending_key

logger = logging.getLogger(__name__)

LIST_SEPARATOR = "\n"
DEFAULT_LANGUAGE = "zh-CN"
DEFAULT_TITLE = "Untitled Project"
DEFAULT_CONTENT = "..."
DEFAULT_CHOICE_TEXT = "Continue"

_ENDING_TYPES = {
    "good": "good",
    "positive": "good",
    "bad": "bad",
    "negative": "bad",
    "neutral": "neutral",
}


# ---------------------------------------------------------------------------
# Raw JSON
# ---------------------------------------------------------------------------

class _JsonObject(dict):
    """Decoded JSON object that remembers keys which appeared twice."""

    duplicates: tuple[str, ...] = ()


def _object_pairs(pairs: list[tuple[str, Any]]) -> _JsonObject:
    obj = _JsonObject()
    duplicates = []
    for key, value in pairs:
        if key in obj:
            duplicates.append(key)
        obj[key] = value
    if duplicates:
        obj.duplicates = tuple(duplicates)
    return obj


def strip_code_fences(text: str) -> str:
    """Strip markdown fences and chatter around the JSON object an LLM returned."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()
    if not cleaned.startswith(("{", "[")):
        first, last = cleaned.find("{"), cleaned.rfind("}")
        if first != -1 and last > first:
            cleaned = cleaned[first:last + 1]
    return cleaned


def parse_json(raw: str | bytes | Mapping[str, Any] | list) -> Any:
    """Decode raw text into JSON values; mappings and lists pass through."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedInput("Input is not UTF-8 text", path="$") from e
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(strip_code_fences(raw), object_pairs_hook=_object_pairs)
    except json.JSONDecodeError as e:
        raise MalformedInput(f"Input is not valid JSON: {e.msg} (line {e.lineno})", path="$") from e


# ---------------------------------------------------------------------------
# Field shapes
# ---------------------------------------------------------------------------

def _shape(value: Any) -> str:
    return type(value).__name__


def coalesce_text(value: Any, path: str, default: str = "") -> str:
    """string | [string, ...] → string (lists joined with a newline)."""
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return LIST_SEPARATOR.join(value)
    raise MalformedInput(f"Expected a string or a list of strings, got {_shape(value)}", path)


def optional_names(value: Any, path: str) -> list[str] | None:
    """absent | string | [string | null, ...] → None | [string, ...].

    Absence stays None; an explicit empty list stays empty.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        names = []
        for index, item in enumerate(value):
            if item is None:
                continue
            if not isinstance(item, str):
                raise MalformedInput(f"Expected a name, got {_shape(item)}", f"{path}[{index}]")
            names.append(item)
        return names
    raise MalformedInput(f"Expected a list of names, got {_shape(value)}", path)


def identifier(value: Any, path: str) -> str | None:
    """Ids arrive as strings or, from sloppy generators, as integers."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedInput("Expected an identifier, got bool", path)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    raise MalformedInput(f"Expected an identifier, got {_shape(value)}", path)


def integer(value: Any, path: str, default: int | None = 0, *, allow_float: bool = False) -> int | None:
    if value is None:
        return default
    if isinstance(value, bool):
        raise MalformedInput("Expected a number, got bool", path)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and allow_float and math.isfinite(value):
        return round(value)
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("+-").isdigit():
            return int(text)
    raise MalformedInput(f"Expected an integer, got {value!r}", path)


def _age(value: Any, path: str) -> int:
    # Generators like to write "about 30"; legacy records store 0 for unknown.
    if isinstance(value, str) and not value.strip().lstrip("+-").isdigit():
        logger.debug("ignoring non-numeric age %r at %s", value, path)
        return 0
    return integer(value, path, 0, allow_float=True) or 0


def _flag(value: Any, path: str) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    raise MalformedInput(f"Expected true/false, got {_shape(value)}", path)


def _entries(value: Any, path: str, key_fields: tuple[str, ...]) -> list[tuple[str | None, Any, str]]:
    """map-or-list → [(key, raw entry, path)]; list entries take their key from `key_fields`."""
    if isinstance(value, Mapping):
        return [(str(key), raw, f"{path}.{key}") for key, raw in value.items()]
    if isinstance(value, list):
        entries = []
        for index, raw in enumerate(value):
            entry_path = f"{path}[{index}]"
            key = None
            if isinstance(raw, Mapping):
                for field in key_fields:
                    key = identifier(raw.get(field), f"{entry_path}.{field}")
                    if key:
                        break
            entries.append((key, raw, entry_path))
        return entries
    raise MalformedInput(f"Expected a map or a list, got {_shape(value)}", path)


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

def _coerce_character(raw: Any, key: str | None, path: str) -> Character:
    if not isinstance(raw, Mapping):
        raise MalformedInput(f"Expected a character object, got {_shape(raw)}", path)
    declared_id = identifier(raw.get("id"), f"{path}.id")
    name = coalesce_text(raw.get("name"), f"{path}.name").strip() or key or declared_id
    if not name:
        raise MalformedInput("Character has no name", path)

    # `description` is the legacy spelling of background; role stays separate.
    background = raw.get("background")
    if background is None:
        background = raw.get("description")

    return Character(
        id=declared_id or name,
        name=name,
        gender=coalesce_text(raw.get("gender"), f"{path}.gender").strip() or "Unknown",
        age=_age(raw.get("age"), f"{path}.age"),
        role=coalesce_text(raw.get("role"), f"{path}.role"),
        background=coalesce_text(background, f"{path}.background"),
        avatar_path=identifier(raw.get("avatarPath"), f"{path}.avatarPath"),
        is_main=_flag(raw.get("isMain"), f"{path}.isMain"),
    )


def coerce_characters(value: Any, path: str = "characters") -> dict[str, Character]:
    """map name→character | [character, ...] → map keyed by display name.

    Later entries win when two characters share a name.
    """
    if value is None:
        return {}
    characters: dict[str, Character] = {}
    for key, raw, entry_path in _entries(value, path, ()):
        character = _coerce_character(raw, key, entry_path)
        if character.name in characters:
            logger.debug("character %r defined twice; keeping the last", character.name)
        characters[character.name] = character
    return characters


def coerce_character_inputs(value: Any, path: str = "characters") -> list[CharacterInput]:
    """Cast suggestions as returned by the character expansion prompt."""
    value = parse_json(value)
    if isinstance(value, Mapping) and "characters" in value:
        value = value["characters"]
        path = f"{path}.characters"
    if not isinstance(value, list):
        raise MalformedInput(f"Expected a list of characters, got {_shape(value)}", path)
    inputs = []
    for index, raw in enumerate(value):
        entry_path = f"{path}[{index}]"
        if not isinstance(raw, Mapping):
            raise MalformedInput(f"Expected a character object, got {_shape(raw)}", entry_path)
        name = coalesce_text(raw.get("name"), f"{entry_path}.name").strip()
        if not name:
            continue
        inputs.append(CharacterInput(
            name=name,
            description=coalesce_text(raw.get("description", raw.get("role")), f"{entry_path}.description"),
            gender=coalesce_text(raw.get("gender"), f"{entry_path}.gender"),
            is_main=bool(_flag(raw.get("isMain"), f"{entry_path}.isMain")),
        ))
    return inputs


# ---------------------------------------------------------------------------
# Nodes and choices
# ---------------------------------------------------------------------------

def _coerce_content(value: Any, path: str) -> str:
    if isinstance(value, Mapping):
        # legacy {text, notes} wrapper; notes were authoring hints only
        if "text" not in value:
            raise MalformedInput("Wrapped content has no 'text'", path)
        return coalesce_text(value["text"], f"{path}.text", DEFAULT_CONTENT)
    return coalesce_text(value, path, DEFAULT_CONTENT)


def _coerce_affinity(value: Any, path: str) -> AffinityEffect | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise MalformedInput(f"Expected an affinity object, got {_shape(value)}", path)
    target = value.get("characterId", value.get("characterName"))
    return AffinityEffect(
        character_id=identifier(target, f"{path}.characterId") or "",
        delta=integer(value.get("delta"), f"{path}.delta", 0, allow_float=True),
    )


def _coerce_choice(raw: Any, path: str) -> Choice:
    if not isinstance(raw, Mapping):
        raise MalformedInput(f"Expected a choice object, got {_shape(raw)}", path)
    target = raw.get("nextNodeId", raw.get("next_node_id"))
    return Choice(
        text=coalesce_text(raw.get("text"), f"{path}.text").strip() or DEFAULT_CHOICE_TEXT,
        next_node_id=identifier(target, f"{path}.nextNodeId") or END_TRANSITION,
        affinity_effect=_coerce_affinity(raw.get("affinityEffect"), f"{path}.affinityEffect"),
    )


def _coerce_node(key: str, raw: Any, path: str) -> StoryNode | None:
    """One node; None for the empty placeholders legacy data contains."""
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        return StoryNode(id=key, content=raw)
    if not isinstance(raw, Mapping):
        raise MalformedInput(f"Expected a node object, got {_shape(raw)}", path)
    if not raw:
        return None

    declared_id = identifier(raw.get("id"), f"{path}.id") or identifier(raw.get("nodeId"), f"{path}.nodeId")
    content = raw["content"] if "content" in raw else raw.get("text")

    choices_raw = raw.get("choices")
    if choices_raw is None:
        choices_raw = []
    if not isinstance(choices_raw, list):
        raise MalformedInput(f"Expected a list of choices, got {_shape(choices_raw)}", f"{path}.choices")

    return StoryNode(
        id=declared_id or key,
        content=_coerce_content(content, f"{path}.content"),
        ending_key=identifier(raw.get("endingKey"), f"{path}.endingKey"),
        level=integer(raw.get("level"), f"{path}.level", None),
        characters=optional_names(raw.get("characters"), f"{path}.characters"),
        choices=[
            _coerce_choice(choice, f"{path}.choices[{index}]")
            for index, choice in enumerate(choices_raw)
        ],
    )


def coerce_nodes(value: Any, path: str = "nodes") -> dict[str, StoryNode]:
    if value is None:
        return {}
    duplicates = getattr(value, "duplicates", ())
    if duplicates:
        raise DuplicateNodeId(
            f"Node id '{duplicates[0]}' is defined more than once", path=f"{path}.{duplicates[0]}"
        )
    nodes: dict[str, StoryNode] = {}
    seen: set[str] = set()
    for key, raw, node_path in _entries(value, path, ("id", "nodeId")):
        if key is None:
            raise MalformedInput("Listed node has no id", node_path)
        if key in seen:
            raise DuplicateNodeId(f"Node id '{key}' is defined more than once", path=node_path)
        seen.add(key)
        node = _coerce_node(key, raw, node_path)
        if node is None:
            logger.debug("dropping empty node %s", node_path)
            continue
        nodes[key] = node
    return nodes


# ---------------------------------------------------------------------------
# Endings, meta, template
# ---------------------------------------------------------------------------

def _coerce_ending(raw: Any, key: str, path: str) -> Ending:
    if not isinstance(raw, Mapping):
        raise MalformedInput(f"Expected an ending object, got {_shape(raw)}", path)
    kind = raw.get("type")
    if kind is None:
        # `ending_good` and friends carry their category in the key
        canonical = canonical_ending_key(key)
        kind = canonical.removeprefix("ending_") if canonical else None
    if not isinstance(kind, str) or kind.strip().lower() not in _ENDING_TYPES:
        raise MalformedInput(f"Unknown ending type {kind!r}", f"{path}.type")
    return Ending(
        type=_ENDING_TYPES[kind.strip().lower()],
        description=coalesce_text(raw.get("description"), f"{path}.description"),
        node_id=identifier(raw.get("nodeId"), f"{path}.nodeId"),
    )


def coerce_endings(value: Any, path: str = "endings") -> dict[str, Ending]:
    if value is None:
        return {}
    endings: dict[str, Ending] = {}
    for key, raw, entry_path in _entries(value, path, ("key", "endingKey", "id")):
        if key is None:
            raise MalformedInput("Listed ending has no key", entry_path)
        endings[key] = _coerce_ending(raw, key, entry_path)
    return endings


def coerce_meta(value: Any, language: str, path: str = "meta") -> MetaInfo:
    if value is None:
        value = {}
    if not isinstance(value, Mapping):
        raise MalformedInput(f"Expected a meta object, got {_shape(value)}", path)
    return MetaInfo(
        logline=coalesce_text(value.get("logline"), f"{path}.logline"),
        synopsis=coalesce_text(value.get("synopsis"), f"{path}.synopsis"),
        target_runtime_minutes=integer(
            value.get("targetRuntimeMinutes"), f"{path}.targetRuntimeMinutes", 0, allow_float=True
        ),
        genre=coalesce_text(value.get("genre"), f"{path}.genre"),
        language=coalesce_text(value.get("language"), f"{path}.language").strip() or language,
    )


def coerce_template(raw: Any, *, language: str = DEFAULT_LANGUAGE) -> Template:
    """Resolve a raw template (JSON text or decoded mapping) into the canonical model."""
    data = parse_json(raw)
    if not isinstance(data, Mapping):
        raise MalformedInput(f"Template must be a JSON object, got {_shape(data)}", path="$")

    return Template(
        project_id=identifier(data.get("projectId"), "projectId") or str(uuid.uuid4()),
        title=coalesce_text(data.get("title"), "title").strip() or DEFAULT_TITLE,
        version=identifier(data.get("version"), "version") or "1.0.0",
        owner=identifier(data.get("owner"), "owner") or "User",
        meta=coerce_meta(data.get("meta"), language),
        nodes=coerce_nodes(data.get("nodes")),
        endings=coerce_endings(data.get("endings")),
        characters=coerce_characters(data.get("characters")),
        background_image_base64=identifier(data.get("backgroundImageBase64"), "backgroundImageBase64"),
        request_id=identifier(data.get("requestId"), "requestId"),
    )
