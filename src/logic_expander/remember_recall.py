"""Remember/Recall pass — collapses a repeated multi-line pattern into recalls."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .grammar import Flag, RECALL_LITERAL, serialize_logic, split_logic

logger = logging.getLogger(__name__)

MIN_PATTERN_LINES = 2
MIN_OCCURRENCES = 3

_FLAG_RE = re.compile(r"^([A-Z]:)")


@dataclass
class RRPattern:
    """A repeated run of lines and how often it occurs without overlap."""
    lines: list[str]
    count: int
    start: int

    @property
    def length(self) -> int:
        return len(self.lines)


@dataclass
class RRPatternUsage:
    """How the selected pattern was rewritten."""
    lines: list[str]
    count: int
    original_flag: str
    remember_lines: list[str]
    recall_replacement: str


@dataclass
class RROptimizationResult:
    optimized_logic: str
    original_length: int
    optimized_length: int
    savings: int
    pattern: RRPatternUsage | None = None
    notes: list[str] = field(default_factory=list)


def _count_non_overlapping(starts: list[int], length: int) -> int:
    count = 0
    next_free = 0
    for start in starts:
        if start >= next_free:
            count += 1
            next_free = start + length
    return count


def find_best_pattern(lines: list[str]) -> RRPattern | None:
    """Find the longest run of 2+ lines repeating 3+ times without overlap.

    Ties between equally long patterns go to the one that starts first.
    """
    total = len(lines)
    if total < MIN_PATTERN_LINES * MIN_OCCURRENCES:
        return None

    for length in range(total // MIN_OCCURRENCES, MIN_PATTERN_LINES - 1, -1):
        # dict preserves first-occurrence order, so the earliest start wins.
        occurrences: dict[tuple[str, ...], list[int]] = {}
        for start in range(total - length + 1):
            key = tuple(lines[start:start + length])
            occurrences.setdefault(key, []).append(start)

        for key, starts in occurrences.items():
            if len(starts) < MIN_OCCURRENCES:
                continue
            count = _count_non_overlapping(starts, length)
            if count >= MIN_OCCURRENCES:
                logger.debug("R/R: best pattern is %d lines x %d occurrences", length, count)
                return RRPattern(lines=list(key), count=count, start=starts[0])

    return None


def _unchanged(logic: str, note: str) -> RROptimizationResult:
    logger.debug("R/R: %s", note)
    return RROptimizationResult(
        optimized_logic=logic,
        original_length=len(logic),
        optimized_length=len(logic),
        savings=0,
        notes=[note],
    )


def apply_rr_optimization(logic: str) -> RROptimizationResult:
    """Rewrite the best repeated pattern with Remember/Recall.

    The first occurrence is kept with its last line's flag replaced by
    Remember (``K:``); every later occurrence becomes a single line of the
    original flag followed by ``{recall}``.
    """
    lines = split_logic(logic)
    pattern = find_best_pattern(lines)
    if pattern is None:
        return _unchanged(logic, "no qualifying pattern")

    last_line = pattern.lines[-1]
    flag_match = _FLAG_RE.match(last_line)
    if not flag_match:
        return _unchanged(logic, "pattern's last line has no flag")

    original_flag = flag_match.group(1)
    remember_lines = list(pattern.lines)
    remember_lines[-1] = Flag.REMEMBER.value + last_line[len(original_flag):]
    recall_replacement = original_flag + RECALL_LITERAL

    key = tuple(pattern.lines)
    optimized: list[str] = []
    remembered = False
    idx = 0
    while idx < len(lines):
        if tuple(lines[idx:idx + pattern.length]) == key:
            if remembered:
                optimized.append(recall_replacement)
            else:
                optimized.extend(remember_lines)
                remembered = True
            idx += pattern.length
        else:
            optimized.append(lines[idx])
            idx += 1

    optimized_logic = serialize_logic(optimized)
    result = RROptimizationResult(
        optimized_logic=optimized_logic,
        original_length=len(logic),
        optimized_length=len(optimized_logic),
        savings=len(logic) - len(optimized_logic),
        pattern=RRPatternUsage(
            lines=pattern.lines,
            count=pattern.count,
            original_flag=original_flag,
            remember_lines=remember_lines,
            recall_replacement=recall_replacement,
        ),
    )
    logger.debug(
        "R/R: %d -> %d characters (saved %d)",
        result.original_length, result.optimized_length, result.savings,
    )
    return result
