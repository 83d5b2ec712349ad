"""Handlebars prompt rendering for generation and expansion calls."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pybars

from movie_games.models import CharacterInput

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

DEFAULT_NODES = (40, 60)
DEFAULT_ENDINGS = (3, 5)


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_join(this, items, separator=", "):
    """{{join array ", "}} — join a list of strings."""
    return str(separator).join(str(item) for item in items or [])


_HELPERS: dict[str, Callable] = {
    "join": _helper_join,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

GENERATE_TEMPLATE = """\
# Role
You are a world-class screenwriter and director of interactive movie games.
Write a complete branching script for the theme below and output it directly
as JSON matching the TypeScript definitions.

# Theme
"{{{theme}}}"
{{#if synopsis}}

# Synopsis
{{{synopsis}}}
{{/if}}
{{#if genre}}

# Genre
{{{join genre ", "}}}
{{/if}}

# Requirements
1. Narrate every `node.content` in the first person; the player is the protagonist.
2. Every branch must eventually reach an ending. No cycles: a choice may only
   point to a later node or to a key of `endings`.
3. `nodes` must contain between {{minNodes}} and {{maxNodes}} entries, keyed
   `n_start`, `n_01`, `n_02`, ...
4. `endings` must contain between {{minEndings}} and {{maxEndings}} entries keyed
   `ending_good` / `ending_neutral` / `ending_bad` (extra endings keep the `ending_*` style).
5. A node that ends the story sets `endingKey` to a key of `endings` and has no choices.
6. Every `nextNodeId` must name an existing node or ending.
7. Write all story text in {{{languageLabel}}}.
8. Use only the characters listed below, with exactly these names. The
   protagonist is "{{{protagonist}}}". Every `StoryNode.characters` lists the
   1-3 characters present in the scene.
9. A choice may carry `affinityEffect` ({characterId: <name>, delta: -20..20})
   targeting a non-protagonist character present in that scene.

# Characters (JSON)
{{{charactersJson}}}

# TypeScript definitions
```typescript
interface MovieTemplate {
  projectId: string
  title: string
  version: string
  owner: string
  meta: { logline: string; synopsis: string; targetRuntimeMinutes: number; genre: string; language: string }
  nodes: Record<string, StoryNode>
  endings: Record<string, Ending>
  characters: Record<string, Character>
}
interface Character { id: string; name: string; gender: string; age: number; role: string; background: string }
interface StoryNode { id: string; content: string; endingKey?: string; characters?: string[]; choices: Choice[] }
interface Choice { text: string; nextNodeId: string; affinityEffect?: { characterId: string; delta: number } }
interface Ending { type: 'good' | 'neutral' | 'bad'; description: string }
```

# Output
Pure JSON only: no markdown fences, no explanations.
"""

WORLDVIEW_TEMPLATE = """\
Expand the following idea into a vivid world and story synopsis for an
interactive movie game, in {{{languageLabel}}}, in at most 400 words of plain prose.

Theme: {{{theme}}}
{{#if synopsis}}Current synopsis: {{{synopsis}}}
{{/if}}{{#if genre}}Genre: {{{join genre ", "}}}
{{/if}}"""

CHARACTER_TEMPLATE = """\
Suggest 3 to 5 new characters for an interactive movie game, in {{{languageLabel}}}.
Cover the story functions protagonist, antagonist, supporting and mirror character.

Theme: {{{theme}}}
World: {{{worldview}}}
{{#if synopsis}}Synopsis: {{{synopsis}}}
{{/if}}{{#if genre}}Genre: {{{join genre ", "}}}
{{/if}}{{#if existing}}
Already in the cast (do not repeat them):
{{#each existing}}- {{{name}}}: {{{description}}}
{{/each}}{{/if}}
Output pure JSON: {"characters": [{"name": "", "description": "", "gender": "", "isMain": false}]}
"""


# ── Context builders ─────────────────────────────────────


def language_label(tag: str | None) -> str:
    tag = (tag or "zh-CN").strip()
    if tag.lower().startswith("zh"):
        return "简体中文"
    if tag.lower().startswith("en"):
        return "English"
    return tag


def pick_requested_protagonist(characters: list[CharacterInput]) -> str:
    for character in characters:
        if character.is_main:
            return character.name
    return characters[0].name if characters else "主角"


def build_generate_prompt(
    theme: str,
    *,
    synopsis: str | None = None,
    genre: list[str] | None = None,
    characters: list[CharacterInput] | None = None,
    language: str | None = None,
    nodes: tuple[int, int] = DEFAULT_NODES,
    endings: tuple[int, int] = DEFAULT_ENDINGS,
) -> str:
    characters = characters or []
    context = {
        "theme": theme or "Unknown Theme",
        "synopsis": synopsis,
        "genre": genre or [],
        "languageLabel": language_label(language),
        "protagonist": pick_requested_protagonist(characters),
        "charactersJson": json.dumps(
            [c.to_json() for c in characters], ensure_ascii=False, indent=2
        ),
        "minNodes": nodes[0],
        "maxNodes": nodes[1],
        "minEndings": endings[0],
        "maxEndings": endings[1],
    }
    return render_prompt(GENERATE_TEMPLATE, context)


def build_worldview_prompt(
    theme: str,
    *,
    synopsis: str | None = None,
    genre: list[str] | None = None,
    language: str | None = None,
) -> str:
    return render_prompt(WORLDVIEW_TEMPLATE, {
        "theme": theme,
        "synopsis": synopsis,
        "genre": genre or [],
        "languageLabel": language_label(language),
    })


def build_character_prompt(
    theme: str,
    worldview: str,
    *,
    synopsis: str | None = None,
    existing: list[CharacterInput] | None = None,
    genre: list[str] | None = None,
    language: str | None = None,
) -> str:
    return render_prompt(CHARACTER_TEMPLATE, {
        "theme": theme,
        "worldview": worldview,
        "synopsis": synopsis,
        "existing": [c.to_json() for c in existing or []],
        "genre": genre or [],
        "languageLabel": language_label(language),
    })
