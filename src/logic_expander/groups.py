"""Link-group model — ordering, renumbering, leadership and link/unlink."""

from __future__ import annotations

import logging
from itertools import groupby

from .grammar import Condition

logger = logging.getLogger(__name__)


def find_condition(conditions: list[Condition], line_id: int) -> Condition | None:
    for condition in conditions:
        if condition.line_id == line_id:
            return condition
    return None


def index_of(conditions: list[Condition], line_id: int) -> int:
    """Position of ``line_id`` in the list, or -1."""
    for idx, condition in enumerate(conditions):
        if condition.line_id == line_id:
            return idx
    return -1


def get_group_lines(conditions: list[Condition], group_id: int) -> list[Condition]:
    """All conditions with ``group_id``, in list order."""
    return [c for c in conditions if c.group_id == group_id]


def get_group_leader(conditions: list[Condition], group_id: int) -> Condition | None:
    """The member with the highest line id, or None for an unknown group."""
    members = get_group_lines(conditions, group_id)
    if not members:
        return None
    return max(members, key=lambda c: c.line_id)


def is_group_leader(conditions: list[Condition], condition: Condition) -> bool:
    leader = get_group_leader(conditions, condition.group_id)
    return leader is not None and leader.line_id == condition.line_id


def group_of(conditions: list[Condition], line_id: int) -> list[Condition]:
    """The whole group containing ``line_id`` (empty if the line is unknown)."""
    condition = find_condition(conditions, line_id)
    if condition is None:
        return []
    return get_group_lines(conditions, condition.group_id)


def iter_groups(conditions: list[Condition]) -> list[list[Condition]]:
    """Split the list into its contiguous link groups, top to bottom."""
    return [list(run) for _, run in groupby(conditions, key=lambda c: c.group_id)]


def recalculate_line_and_group_ids(conditions: list[Condition]) -> None:
    """Renumber line ids 1..N and re-derive every group id from its leader.

    Each maximal contiguous run of equal ``group_id`` is one group; its new
    ``group_id`` is the new ``line_id`` of its last member. Runs are taken
    from the ids held *before* renumbering, so inserted rows (which carry
    placeholder ids) never merge into their neighbours' groups.
    """
    runs = iter_groups(conditions)
    for idx, condition in enumerate(conditions):
        condition.line_id = idx + 1
    for run in runs:
        leader_id = run[-1].line_id
        for member in run:
            member.group_id = leader_id


def _normalize_group(members: list[Condition]) -> None:
    leader_id = max(m.line_id for m in members)
    for member in members:
        member.group_id = leader_id


def _has_expansion(members: list[Condition]) -> bool:
    return any(c.expanded and c.expanded_lines for c in members)


def _group_below(conditions: list[Condition], members: list[Condition]) -> list[Condition]:
    """The group immediately below ``members`` (empty at the bottom)."""
    last_idx = max(index_of(conditions, m.line_id) for m in members)
    if last_idx >= len(conditions) - 1:
        return []
    below = conditions[last_idx + 1]
    return get_group_lines(conditions, below.group_id)


def can_link(conditions: list[Condition], line_id: int) -> bool:
    """Whether ``line_id`` may merge the group below into its own group.

    Requires ``line_id`` to lead its group, a group to exist below, and
    neither group to hold confirmed expansion lines.
    """
    condition = find_condition(conditions, line_id)
    if condition is None or not is_group_leader(conditions, condition):
        return False

    members = get_group_lines(conditions, condition.group_id)
    if _has_expansion(members):
        return False

    below = _group_below(conditions, members)
    if not below:
        return False
    return not _has_expansion(below)


def link(conditions: list[Condition], line_id: int) -> bool:
    """Merge the group immediately below into ``line_id``'s group.

    Returns:
        True when the groups were merged, False when the link was illegal.
    """
    if not can_link(conditions, line_id):
        return False

    condition = find_condition(conditions, line_id)
    members = get_group_lines(conditions, condition.group_id)
    below = _group_below(conditions, members)
    merged = members + below
    _normalize_group(merged)
    logger.debug(
        "Linked line %d with %d line(s) below; group now %d lines",
        line_id, len(below), len(merged),
    )
    return True


def unlink(conditions: list[Condition], line_id: int) -> bool:
    """Split ``line_id``'s group after ``line_id``.

    Every member positioned after it returns to a singleton group; the head
    of the group keeps its membership and is re-led by its last member.
    """
    condition = find_condition(conditions, line_id)
    if condition is None:
        return False

    members = get_group_lines(conditions, condition.group_id)
    position = members.index(condition)
    tail = members[position + 1:]
    if not tail:
        return False

    for member in tail:
        member.group_id = member.line_id
    _normalize_group(members[: position + 1])
    logger.debug("Unlinked %d line(s) after line %d", len(tail), line_id)
    return True


def auto_link_chaining_flags(conditions: list[Condition]) -> int:
    """Link every chaining-flag leader with whatever lies below it.

    Scans top to bottom repeatedly until no further link is legal.

    Returns:
        Number of links made.
    """
    links = 0
    changed = True
    while changed:
        changed = False
        for condition in conditions:
            if not condition.flag.is_chaining:
                continue
            if not is_group_leader(conditions, condition):
                continue
            if link(conditions, condition.line_id):
                links += 1
                changed = True
    if links:
        logger.debug("Auto-linked %d chaining line(s)", links)
    return links
