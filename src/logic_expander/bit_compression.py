"""Bit-compression pass — folds runs of single-bit reads into one BitCount read."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .grammar import (
    Condition,
    Flag,
    Operand,
    OperandKind,
    Size,
    parse_line,
    serialize_condition,
    serialize_operand,
)

logger = logging.getLogger(__name__)

MIN_RUN_LENGTH = 5
COMPRESSIBLE_FLAGS = frozenset({Flag.ADD_SOURCE, Flag.SUB_SOURCE})


@dataclass
class BitRun:
    """Consecutive single-bit reads of one address sharing a modifier."""
    address: str
    kind: OperandKind
    tail: str
    template: Condition
    bits: list[int] = field(default_factory=list)
    flags: list[Flag] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)

    @property
    def last_flag(self) -> Flag:
        return self.flags[-1]

    @property
    def compressible(self) -> bool:
        if len(self.bits) < MIN_RUN_LENGTH or self.last_flag not in COMPRESSIBLE_FLAGS:
            return False
        return len(_compress_run(self)) < len(self.lines)

    def missing_bits(self) -> list[int]:
        return [b for b in range(8) if b not in self.bits]


def _tail(condition: Condition) -> str:
    """Everything after the left operand: comparison, right side and hits."""
    text = ""
    if condition.cmp:
        text += condition.cmp + serialize_operand(condition.right)
    if condition.hits and not condition.flag.is_operand:
        text += f".{condition.hits}."
    return text


def _flag_class(flag: Flag) -> Flag | None:
    """Add and Sub Source share a run; any other flag only joins its own kind."""
    return None if flag in COMPRESSIBLE_FLAGS else flag


def _bit_line(line: str) -> tuple[Condition, int] | None:
    condition = parse_line(line)
    if condition is None or not condition.left.kind.is_memory:
        return None
    size = condition.left.size
    if size is None or size.bit_index is None:
        return None
    return condition, size.bit_index


def _partition(lines: list[str]) -> list[BitRun | str]:
    """Split lines into bit runs and pass-through lines, preserving order."""
    parts: list[BitRun | str] = []
    current: BitRun | None = None

    for line in lines:
        parsed = _bit_line(line)
        if parsed is None:
            current = None
            parts.append(line)
            continue

        condition, bit = parsed
        tail = _tail(condition)
        continues = (
            current is not None
            and current.address == condition.left.literal
            and current.kind is condition.left.kind
            and current.tail == tail
            and bit not in current.bits
            and _flag_class(current.flags[0]) == _flag_class(condition.flag)
        )
        if not continues:
            current = BitRun(
                address=condition.left.literal,
                kind=condition.left.kind,
                tail=tail,
                template=condition,
            )
            parts.append(current)

        current.bits.append(bit)
        current.flags.append(condition.flag)
        current.lines.append(line)

    return parts


def _render(run: BitRun, flag: Flag, size: Size) -> str:
    template = run.template
    condition = Condition(
        flag=flag,
        left=Operand(run.kind, size, run.address),
        cmp=template.cmp,
        right=template.right,
        hits=template.hits,
    )
    return serialize_condition(condition)


def _compress_run(run: BitRun) -> list[str]:
    flag = run.last_flag
    opposite = Flag.SUB_SOURCE if flag is Flag.ADD_SOURCE else Flag.ADD_SOURCE
    aggregate = _render(run, flag, Size.BIT_COUNT)

    # The aggregate counts every bit with the run's flag: a missing bit needs
    # one opposite-flag line, a bit that carried the opposite flag needs two.
    flipped = {b for b, f in zip(run.bits, run.flags) if f is opposite}
    missing = set(run.missing_bits())
    corrections = []
    for b in range(8):
        repeats = 1 if b in missing else 2 if b in flipped else 0
        corrections.extend([_render(run, opposite, Size.bit(b))] * repeats)

    logger.debug(
        "Compressing %d bit lines at %s into %s with %d correction(s)",
        len(run.bits), run.address, flag.value, len(corrections),
    )
    # Sub Source subtracts the aggregate, so the corrections are added first.
    if flag is Flag.SUB_SOURCE:
        return corrections + [aggregate]
    return [aggregate] + corrections


def compress_bits(lines: list[str]) -> list[str]:
    """Replace runs of 5+ single-bit Add/Sub Source reads with a BitCount read.

    A run is a maximal sequence of lines reading single bits of the same
    address with the same modifier and comparison. The flag of the run's
    last line decides between Add Source and Sub Source; each bit absent from
    the run is cancelled with the opposite flag, and a bit that was read
    with the opposite flag is corrected twice. Runs that would not get
    shorter are left alone. Correction lines can form a new run with the
    lines that follow, so passes repeat until nothing changes. Returns the
    input unchanged when no run qualifies.
    """
    result = list(lines)
    while True:
        compressed = _compress_pass(result)
        if compressed is None:
            return result
        result = compressed


def _compress_pass(lines: list[str]) -> list[str] | None:
    """One left-to-right pass; None when no run qualifies."""
    parts = _partition(lines)
    if not any(isinstance(p, BitRun) and p.compressible for p in parts):
        return None

    result: list[str] = []
    for part in parts:
        if isinstance(part, str):
            result.append(part)
        elif part.compressible:
            result.extend(_compress_run(part))
        else:
            result.extend(part.lines)
    return result


def compression_savings(lines: list[str]) -> int:
    """Lines saved by :func:`compress_bits`."""
    return len(lines) - len(compress_bits(lines))
