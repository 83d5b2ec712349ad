"""Canonical node identifiers and ending keys.

Historical templates spell the start node several ways (`n_start`,
`node_start`, ...) and prefix numbered nodes (`n_12`, `node_12`). Everything
downstream expects `start` and bare numbers, so keys and all references are
rewritten here through one rename table.
"""

from __future__ import annotations

import logging
import re

from movie_games.errors import DuplicateNodeId
from movie_games.models import Finding, Template

logger = logging.getLogger(__name__)

START_NODE = "start"
START_ALIASES = frozenset({"start", "n_start", "node_start", "Start", "START"})

# Reserved choice target meaning "the story ends here" without a specific ending.
END_TRANSITION = "END"

_LEGACY_NUMBERED = re.compile(r"^(?:n|node)_(\d+)$")

_ENDING_ALIASES: dict[str, str] = {}
for _kind in ("good", "neutral", "bad"):
    for _alias in (f"ending_{_kind}", f"{_kind}_end", f"end_{_kind}", _kind, _kind.upper()):
        _ENDING_ALIASES[_alias] = f"ending_{_kind}"


def canonical_node_id(key: str) -> str:
    """Return the canonical spelling of a single node key."""
    if key in START_ALIASES:
        return START_NODE
    match = _LEGACY_NUMBERED.match(key)
    if match:
        return match.group(1)
    return key


def canonical_ending_key(key: str) -> str | None:
    """`good_end` → `ending_good`; None when `key` is not a known alias."""
    return _ENDING_ALIASES.get(key.strip())


def build_rename_table(keys) -> dict[str, str]:
    """Map each key that changes to its canonical form.

    Raises DuplicateNodeId when two keys would collapse into one.
    """
    table: dict[str, str] = {}
    owners: dict[str, str] = {}
    for key in sorted(keys):
        new_key = canonical_node_id(key)
        if new_key in owners:
            raise DuplicateNodeId(
                f"Node ids '{owners[new_key]}' and '{key}' both normalize to '{new_key}'",
                path=f"nodes.{key}",
            )
        owners[new_key] = key
        if new_key != key:
            table[key] = new_key
    return table


def normalize_node_ids(template: Template) -> list[Finding]:
    """Rewrite node keys, node ids, choice targets and ending bindings in place."""
    table = build_rename_table(template.nodes)
    canonical_keys = {table.get(k, k) for k in template.nodes}

    def resolve(ref: str) -> str:
        if ref in table:
            return table[ref]
        if ref in canonical_keys:
            return ref
        candidate = canonical_node_id(ref)
        return candidate if candidate in canonical_keys else ref

    findings: list[Finding] = []
    nodes = {}
    for old_key, node in template.nodes.items():
        key = table.get(old_key, old_key)
        if node.id != key and resolve(node.id) != key:
            findings.append(Finding(
                kind="node-id-mismatch",
                path=f"nodes.{key}.id",
                message=f"Node declared id '{node.id}' but is stored under '{key}'",
            ))
        node.id = key
        for choice in node.choices:
            choice.next_node_id = resolve(choice.next_node_id)
        nodes[key] = node
    template.nodes = nodes

    for ending in template.endings.values():
        if ending.node_id:
            ending.node_id = resolve(ending.node_id)

    if table:
        logger.debug("renamed %d node ids", len(table))
    return findings


def normalize_ending_keys(template: Template) -> list[Finding]:
    """Collapse ending aliases onto `ending_good` / `ending_neutral` / `ending_bad`.

    A canonical key always wins over an alias of the same kind; the alias
    entry is discarded and reported.
    """
    findings: list[Finding] = []
    endings = {}
    aliases = []
    for key, ending in template.endings.items():
        canonical = canonical_ending_key(key)
        if canonical is None or canonical == key:
            endings[key] = ending
        else:
            aliases.append((key, canonical, ending))

    for key, canonical, ending in aliases:
        if canonical in endings:
            findings.append(Finding(
                kind="ending-alias-discarded",
                path=f"endings.{key}",
                message=f"Ending '{key}' duplicates '{canonical}' and was discarded",
            ))
            continue
        endings[canonical] = ending
    template.endings = endings

    for node in template.nodes.values():
        if node.ending_key:
            node.ending_key = canonical_ending_key(node.ending_key) or node.ending_key
        for choice in node.choices:
            target = choice.next_node_id
            if target in template.nodes:
                continue
            choice.next_node_id = canonical_ending_key(target) or target
    return findings
