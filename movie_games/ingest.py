"""Template ingestion pipeline.

    raw → coerce → sanitize → normalize ids → (roster) → scene characters
        → affinity → graph → IngestResult

LLM output and user-imported files go through exactly the same stages.
Every fatal problem raises an IngestError subclass at the stage that finds
it; non-fatal findings are collected on the result. Nothing is persisted
here, the caller stores the result only after ingest returns.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from movie_games.affinity import enforce_affinity, enforce_roster, resolve_scene_characters
from movie_games.coercion import DEFAULT_LANGUAGE, coerce_template
from movie_games.graph import validate_graph
from movie_games.models import CharacterInput, Finding, IngestResult, Template
from movie_games.node_ids import normalize_ending_keys, normalize_node_ids
from movie_games.sanitizer import ContentSanitizer

logger = logging.getLogger(__name__)


def ingest(
    raw: str | bytes | Mapping[str, Any],
    *,
    language: str = DEFAULT_LANGUAGE,
    sanitizer: ContentSanitizer | None = None,
    strict_characters: bool = False,
    roster: Iterable[CharacterInput] | None = None,
) -> IngestResult:
    """Turn raw template data into a validated canonical template.

    Args:
        raw:               JSON text (fences allowed) or an already decoded mapping.
                           Mappings are deep-copied, never mutated.
        language:          Fallback for `meta.language`.
        sanitizer:         Disallowed-term filter; None skips redaction.
        strict_characters: Reject scenes naming characters outside the cast.
        roster:            Requested cast; restricts the template's characters.
    """
    if isinstance(raw, Mapping):
        raw = copy.deepcopy(dict(raw))

    template = coerce_template(raw, language=language)
    findings: list[Finding] = []

    if sanitizer is not None:
        sanitizer.sanitize_template(template)

    findings += normalize_ending_keys(template)
    findings += normalize_node_ids(template)

    if roster is not None:
        enforce_roster(template, roster)

    findings += resolve_scene_characters(template, strict=strict_characters)
    findings += enforce_affinity(template)

    report = validate_graph(template)
    findings += report.findings

    logger.debug(
        "ingested %r: %d nodes, start=%s, %d orphans, %d findings",
        template.title, len(template.nodes), report.start, len(report.orphans), len(findings),
    )
    return IngestResult(template=template, start=report.start, orphans=report.orphans, findings=findings)


def revalidate(
    template: Template,
    *,
    sanitizer: ContentSanitizer | None = None,
    strict_characters: bool = False,
) -> IngestResult:
    """Run an existing template through the whole pipeline again."""
    return ingest(
        template.to_json(),
        language=template.meta.language or DEFAULT_LANGUAGE,
        sanitizer=sanitizer,
        strict_characters=strict_characters,
    )
