"""Affinity effects: who may be affected, and by how much.

An effect may only target a character present in the node's scene, never
the protagonist, and its delta is clamped to [MIN_DELTA, MAX_DELTA].
Violations are repaired and reported; they never reject a template.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from movie_games.errors import UnknownCharacter
from movie_games.models import Character, CharacterInput, Finding, Template

logger = logging.getLogger(__name__)

MIN_DELTA = -20
MAX_DELTA = 20

MIN_AFFINITY = 0
MAX_AFFINITY = 100
DEFAULT_AFFINITY = 50

_MAIN_MARKERS = ("player", "protagonist", "main")


# ---------------------------------------------------------------------------
# Cast lookup
# ---------------------------------------------------------------------------

def _protagonist_score(character: Character) -> int:
    key = character.id.lower()
    role = character.role.lower()
    name = character.name.strip()
    name_l = name.lower()

    score = 0
    if any(m in key for m in _MAIN_MARKERS):
        score += 5
    if any(m in role for m in _MAIN_MARKERS) or "主角" in role:
        score += 6
    if name == "我" or "主角" in name:
        score += 7
    if "protagonist" in name_l or "player" in name_l:
        score += 4
    return score


def pick_protagonist(characters: dict[str, Character]) -> str | None:
    """Name of the player character, or None when nobody qualifies."""
    for name, character in characters.items():
        if character.is_main:
            return name

    best: tuple[int, str] | None = None
    for name, character in characters.items():
        score = _protagonist_score(character)
        if score > 0 and (best is None or score > best[0]):
            best = (score, name)
    return best[1] if best else None


def character_aliases(characters: dict[str, Character]) -> dict[str, str]:
    """Map every legacy id and every name to the canonical display name."""
    aliases: dict[str, str] = {}
    for name, character in characters.items():
        character_id = character.id.strip()
        if character_id:
            aliases[character_id] = name
    for name in characters:
        aliases[name] = name
    return aliases


def resolve_scene_characters(template: Template, strict: bool = False) -> list[Finding]:
    """Rewrite node character lists to display names.

    Ids are resolved to names, whitespace trimmed and repeats removed.
    Names that match nobody are kept and reported, or rejected when `strict`.
    """
    aliases = character_aliases(template.characters)
    findings: list[Finding] = []
    for key, node in template.nodes.items():
        if node.characters is None:
            continue
        resolved: list[str] = []
        for index, raw in enumerate(node.characters):
            name = raw.strip()
            if not name:
                continue
            name = aliases.get(name, name)
            if name in resolved:
                continue
            if name not in template.characters:
                path = f"nodes.{key}.characters[{index}]"
                if strict:
                    raise UnknownCharacter(f"Scene lists unknown character '{name}'", path=path)
                logger.warning("node %s lists unknown character %r", key, name)
                findings.append(Finding(
                    kind="unknown-character",
                    path=path,
                    message=f"Character '{name}' is not in the cast",
                ))
            resolved.append(name)
        node.characters = resolved
    return findings


def enforce_roster(template: Template, roster: Iterable[CharacterInput]) -> None:
    """Restrict the cast to the characters a user asked for.

    Generated details are kept for requested names; everyone else is removed
    from the cast and from every scene.
    """
    cast: dict[str, Character] = {}
    for entry in roster:
        name = entry.name.strip()
        if not name:
            continue
        generated = template.characters.get(name)
        character = generated.model_copy() if generated else Character(id=name, name=name)
        character.name = name
        if entry.gender.strip():
            character.gender = entry.gender.strip()
        if entry.description.strip() and not character.role:
            character.role = entry.description.strip()
        character.is_main = entry.is_main or None
        cast[name] = character

    if not cast:
        return
    aliases = character_aliases(template.characters)
    for node in template.nodes.values():
        if node.characters is None:
            continue
        kept = []
        for raw in node.characters:
            name = aliases.get(raw.strip(), raw.strip())
            if name in cast and name not in kept:
                kept.append(name)
        node.characters = kept or None
    dropped = set(template.characters) - set(cast)
    if dropped:
        logger.info("dropped %d characters outside the requested cast", len(dropped))
    template.characters = cast


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------

def enforce_affinity(template: Template) -> list[Finding]:
    """Clamp, resolve or drop every affinity effect in place.

    Expects scene character lists already resolved to display names.
    """
    aliases = character_aliases(template.characters)
    protagonist = pick_protagonist(template.characters)
    findings: list[Finding] = []

    for key, node in template.nodes.items():
        scene = set(node.characters or ())
        for index, choice in enumerate(node.choices):
            effect = choice.affinity_effect
            if effect is None:
                continue
            path = f"nodes.{key}.choices[{index}].affinityEffect"

            clamped = max(MIN_DELTA, min(MAX_DELTA, effect.delta))
            if clamped != effect.delta:
                findings.append(Finding(
                    kind="affinity-clamped",
                    path=f"{path}.delta",
                    message=f"Delta {effect.delta} clamped to {clamped}",
                ))
                effect.delta = clamped

            raw = effect.character_id.strip()
            target = aliases.get(raw, raw)
            effect.character_id = target

            if not target:
                reason = "has no target"
            elif target == protagonist:
                reason = f"targets the protagonist '{target}'"
            elif target not in scene:
                reason = f"targets '{target}' who is not in the scene"
            else:
                continue

            logger.warning("dropping affinity effect at %s: %s", path, reason)
            findings.append(Finding(kind="affinity-dropped", path=path, message=f"Effect {reason}"))
            choice.affinity_effect = None
    return findings


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------

class AffinityState:
    """Per-character affinity during play, kept within [0, 100]."""

    def __init__(self, values: dict[str, int] | None = None) -> None:
        self.values: dict[str, int] = dict(values or {})

    def get(self, character: str) -> int:
        return self.values.get(character, DEFAULT_AFFINITY)

    def apply(self, effect) -> int:
        """Apply an AffinityEffect and return the character's new value."""
        value = self.get(effect.character_id) + effect.delta
        value = max(MIN_AFFINITY, min(MAX_AFFINITY, value))
        self.values[effect.character_id] = value
        return value
