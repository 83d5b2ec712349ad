"""Disallowed-term redaction.

Matches are case-insensitive and each matched character is replaced by
MASK, so length and position of the surrounding text are preserved. Each
scanned string counts its distinct terms and the counts add up over the
whole request; more than REJECT_THRESHOLD hits rejects the request outright.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from movie_games.errors import SensitiveContent
from movie_games.models import Template

logger = logging.getLogger(__name__)

MASK = "*"
REJECT_THRESHOLD = 3
WORDS_FILE = "sensitive_words.txt"

# Request keys that carry configuration, never user prose.
SKIPPED_KEYS = frozenset({"apiKey", "baseUrl", "model", "size"})

_SPLIT = re.compile(r"[,\n\r\t]+")


def parse_word_list(text: str) -> list[str]:
    """Split an env-style word list on commas, newlines and tabs."""
    return [w.strip() for w in _SPLIT.split(text) if w.strip()]


def load_word_file(path: Path) -> list[str]:
    if not path.is_file():
        return []
    words = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            words.append(line)
    return words


class ContentSanitizer:
    """Counts and masks disallowed terms.

    A sanitizer with an empty word list is a no-op.
    """

    def __init__(self, words: Iterable[str] = ()) -> None:
        unique = {w.strip().casefold(): w.strip() for w in words if w and w.strip()}
        self.words = sorted(unique.values(), key=lambda w: (-len(w), w))
        if self.words:
            # longest first so "badword" is masked whole, not as "bad" + "word"
            alternation = "|".join(re.escape(w) for w in self.words)
            self._pattern: re.Pattern[str] | None = re.compile(alternation, re.IGNORECASE)
        else:
            self._pattern = None

    @classmethod
    def from_env(cls, data_dir: Path | None = None, extra: Iterable[str] = ()) -> ContentSanitizer:
        """Build from SENSITIVE_WORDS, the word file and any configured extras."""
        words = list(extra)
        words += parse_word_list(os.getenv("SENSITIVE_WORDS", ""))

        path_env = os.getenv("SENSITIVE_WORDS_PATH", "")
        if path_env:
            path = Path(path_env)
        elif data_dir is not None:
            path = data_dir / WORDS_FILE
        else:
            path = Path(WORDS_FILE)
        words += load_word_file(path)

        sanitizer = cls(words)
        logger.info("content sanitizer loaded %d terms", len(sanitizer.words))
        return sanitizer

    def __bool__(self) -> bool:
        return self._pattern is not None

    # -- text ----------------------------------------------------------------

    def sanitize_text(self, text: str) -> tuple[str, int]:
        """Return (masked text, number of distinct terms found)."""
        if self._pattern is None or not text:
            return text, 0
        found: set[str] = set()

        def mask(match: re.Match[str]) -> str:
            found.add(match.group(0).casefold())
            return MASK * len(match.group(0))

        return self._pattern.sub(mask, text), len(found)

    # -- request payloads ----------------------------------------------------

    def sanitize_value(self, value: Any) -> tuple[Any, int]:
        """Walk decoded JSON, masking every string outside SKIPPED_KEYS."""
        if isinstance(value, str):
            return self.sanitize_text(value)
        if isinstance(value, list):
            hits = 0
            items = []
            for item in value:
                clean, n = self.sanitize_value(item)
                items.append(clean)
                hits += n
            return items, hits
        if isinstance(value, Mapping):
            hits = 0
            out = {}
            for key, item in value.items():
                if key in SKIPPED_KEYS:
                    out[key] = item
                    continue
                clean, n = self.sanitize_value(item)
                out[key] = clean
                hits += n
            return out, hits
        return value, 0

    def check_payload(self, payload: Mapping[str, Any], exclude: Iterable[str] = ()) -> dict[str, Any]:
        """Sanitize a request body; raises SensitiveContent over the threshold."""
        excluded = set(exclude)
        kept = {k: v for k, v in payload.items() if k not in excluded}
        clean, hits = self.sanitize_value(kept)
        self._enforce(hits)
        for key in excluded:
            if key in payload:
                clean[key] = payload[key]
        return clean

    # -- templates -----------------------------------------------------------

    def sanitize_template(self, template: Template) -> int:
        """Mask free-text template fields in place and return the hit count.

        Node keys, ending keys and character ids are never touched, so
        references stay intact. A masked character name re-keys the cast,
        and the scene lists and affinity targets naming it follow.
        """
        if self._pattern is None:
            return 0
        hits = 0

        def clean(text: str) -> str:
            nonlocal hits
            masked, n = self.sanitize_text(text)
            hits += n
            return masked

        template.title = clean(template.title)
        meta = template.meta
        meta.logline = clean(meta.logline)
        meta.synopsis = clean(meta.synopsis)
        meta.genre = clean(meta.genre)
        for ending in template.endings.values():
            ending.description = clean(ending.description)

        # names are keys: masked names are re-keyed and every reference follows
        renamed: dict[str, str] = {}
        characters = {}
        for name, character in template.characters.items():
            masked = clean(name)
            if masked != name:
                renamed[name] = masked
                character.name = masked
            character.role = clean(character.role)
            character.background = clean(character.background)
            characters[masked] = character
        template.characters = characters

        ids = {character.id.strip() for character in characters.values()}

        def clean_ref(ref: str) -> str:
            key = ref.strip()
            if key in renamed:
                return renamed[key]
            if key in ids or key in characters:
                return ref
            return clean(ref)

        for node in template.nodes.values():
            node.content = clean(node.content)
            if node.characters is not None:
                node.characters = [clean_ref(entry) for entry in node.characters]
            for choice in node.choices:
                choice.text = clean(choice.text)
                if choice.affinity_effect is not None:
                    effect = choice.affinity_effect
                    effect.character_id = clean_ref(effect.character_id)

        self._enforce(hits)
        return hits

    def _enforce(self, hits: int) -> None:
        if hits > REJECT_THRESHOLD:
            logger.warning("rejecting content with %d disallowed terms", hits)
            raise SensitiveContent(hits)
        if hits:
            logger.info("redacted %d disallowed terms", hits)
