"""Graph integrity: dangling references, start selection, reachability."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from movie_games.errors import DanglingReference, NoPlayableStart
from movie_games.models import Finding, Orphan, Template
from movie_games.node_ids import END_TRANSITION, START_NODE

logger = logging.getLogger(__name__)

FIRST_NUMBERED_NODE = "1"


@dataclass
class GraphReport:
    start: str
    orphans: list[Orphan] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)


def node_sort_key(key: str) -> tuple[int, int, str]:
    """Numeric keys first in numeric order, then everything else lexically."""
    if key.isascii() and key.isdigit():
        return (0, int(key), key)
    return (1, 0, key)


def check_references(template: Template) -> None:
    """Raise DanglingReference for the first choice pointing nowhere."""
    for key in sorted(template.nodes, key=node_sort_key):
        node = template.nodes[key]
        for index, choice in enumerate(node.choices):
            target = choice.next_node_id
            if target == END_TRANSITION or target in template.nodes or target in template.endings:
                continue
            raise DanglingReference(
                f"Choice points to '{target}', which is neither a node nor an ending",
                path=f"nodes.{key}.choices[{index}].nextNodeId",
            )


def select_start(template: Template) -> str:
    """`start` if playable, else node `1`, else the first playable node."""
    nodes = template.nodes
    if START_NODE in nodes and nodes[START_NODE].choices:
        return START_NODE
    if FIRST_NUMBERED_NODE in nodes:
        return FIRST_NUMBERED_NODE
    for key in sorted(nodes, key=node_sort_key):
        if nodes[key].choices:
            return key
    raise NoPlayableStart("No node with at least one choice to start from", path="nodes")


def reachable_from(template: Template, start: str) -> set[str]:
    seen = {start}
    queue = deque([start])
    while queue:
        node = template.nodes[queue.popleft()]
        for choice in node.choices:
            target = choice.next_node_id
            if target in template.nodes and target not in seen:
                seen.add(target)
                queue.append(target)
    return seen


def validate_graph(template: Template) -> GraphReport:
    """Check references, pick the start node and report orphans.

    Raises DanglingReference or NoPlayableStart; everything else is a finding.
    """
    check_references(template)
    start = select_start(template)
    reached = reachable_from(template, start)

    orphans = []
    for key in sorted(template.nodes, key=node_sort_key):
        if key in reached:
            continue
        superseded = key == START_NODE and start == FIRST_NUMBERED_NODE
        orphans.append(Orphan(
            node_id=key,
            reason="superseded-start" if superseded else "unreachable-from-start",
        ))

    findings = []
    for key in sorted(template.nodes, key=node_sort_key):
        node = template.nodes[key]
        if node.ending_key and node.ending_key not in template.endings:
            findings.append(Finding(
                kind="unknown-ending",
                path=f"nodes.{key}.endingKey",
                message=f"Ending '{node.ending_key}' is not defined",
            ))
        if not node.choices and not node.ending_key:
            findings.append(Finding(
                kind="dead-end",
                path=f"nodes.{key}",
                message="Node has no choices and no ending",
            ))

    if orphans:
        logger.debug("graph has %d orphan nodes (start=%s)", len(orphans), start)
    return GraphReport(start=start, orphans=orphans, findings=findings)
