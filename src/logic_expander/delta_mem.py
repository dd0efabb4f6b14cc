"""Delta/Mem accumulator pass — duplicates expanded logic into delta and mem variants."""

from __future__ import annotations

import logging
from dataclasses import replace

from .grammar import (
    Condition,
    Flag,
    Operand,
    OperandKind,
    parse_line,
    serialize_condition,
)

logger = logging.getLogger(__name__)

SENTINEL_LINE = "0=0"

ADD_SUB_FLAGS = frozenset({Flag.ADD_SOURCE, Flag.SUB_SOURCE})
AND_OR_FLAGS = frozenset({Flag.AND_NEXT, Flag.OR_NEXT})
DELTA_OR_MEM = frozenset({OperandKind.DELTA, OperandKind.MEM})

INVERTED_CMPS: dict[str, str] = {
    "=": "!=",
    "!=": "=",
    ">": "<=",
    "<=": ">",
    "<": ">=",
    ">=": "<",
}


def is_mixed_delta_mem(condition: Condition) -> bool:
    """Delta on one side and Mem on the other."""
    kinds = {condition.left.kind, condition.right.kind}
    return kinds == DELTA_OR_MEM and condition.cmp != ""


def _uses_delta_or_mem(condition: Condition) -> bool:
    if condition.left.kind in DELTA_OR_MEM:
        return True
    return bool(condition.cmp) and condition.right.kind in DELTA_OR_MEM


def is_add_sub_group(group: list[Condition]) -> bool:
    return any(c.flag in ADD_SUB_FLAGS for c in group)


def is_and_or_group(group: list[Condition]) -> bool:
    return any(c.flag in AND_OR_FLAGS for c in group)


def delta_check_available(group: list[Condition]) -> bool:
    """Whether the Delta/Mem check can be applied to this group.

    Add/Sub Source chains of any length qualify; And/Or Next only as a
    single line. Some operand must read Delta or Mem, and no line may mix
    the two, since a mixed pair has no defined rewrite.
    """
    if not group:
        return False
    if not any(_uses_delta_or_mem(c) for c in group):
        return False
    if any(is_mixed_delta_mem(c) for c in group):
        return False
    if is_add_sub_group(group):
        return True
    return len(group) == 1 and is_and_or_group(group)


def _convert_operand(operand: Operand, mapping: dict[OperandKind, OperandKind]) -> Operand:
    if not operand.literal.startswith("0x"):
        return operand
    return replace(operand, kind=mapping.get(operand.kind, operand.kind))


def _rewrite(line: str, mapping: dict[OperandKind, OperandKind], **changes) -> str:
    condition = parse_line(line)
    if condition is None:
        return line
    rewritten = replace(
        condition,
        left=_convert_operand(condition.left, mapping),
        right=_convert_operand(condition.right, mapping),
        **changes,
    )
    return serialize_condition(rewritten)


_TO_DELTA = {OperandKind.MEM: OperandKind.DELTA}
_TO_MEM = {OperandKind.DELTA: OperandKind.MEM}
_SWAP = {OperandKind.MEM: OperandKind.DELTA, OperandKind.DELTA: OperandKind.MEM}


def apply_delta_mem_check(lines: list[str], add_sentinel: bool = True) -> list[str]:
    """Build the delta block followed by the mem block.

    Add Address lines are copied unconverted into both blocks. With
    ``add_sentinel`` a ``0=0`` line closes each block so the accumulated
    source does not leak from one block into the next.
    """
    delta_lines: list[str] = []
    mem_lines: list[str] = []
    for line in lines:
        if line.startswith(Flag.ADD_ADDRESS.value):
            delta_lines.append(line)
            mem_lines.append(line)
            continue
        delta_lines.append(_rewrite(line, _TO_DELTA))
        mem_lines.append(_rewrite(line, _TO_MEM))

    if add_sentinel:
        delta_lines.append(SENTINEL_LINE)
        mem_lines.append(SENTINEL_LINE)

    logger.debug("Delta/Mem check: %d lines -> %d", len(lines), len(delta_lines) + len(mem_lines))
    return delta_lines + mem_lines


def _invert_line(line: str, flag_from: Flag, flag_to: Flag) -> str:
    condition = parse_line(line)
    if condition is None:
        return line
    flag = flag_to if condition.flag is flag_from else condition.flag
    cmp = INVERTED_CMPS.get(condition.cmp, condition.cmp)
    return _rewrite(line, _SWAP, flag=flag, cmp=cmp)


def apply_and_or_next_check(lines: list[str]) -> list[str]:
    """Build the and-next block followed by the or-next block.

    Every line but the last swaps its chaining flag, swaps Delta and Mem
    and inverts its comparison. The last line asserts the condition and is
    copied unchanged.
    """
    if not lines:
        return []
    *chained, last = lines
    and_lines = [_invert_line(line, Flag.OR_NEXT, Flag.AND_NEXT) for line in chained]
    or_lines = [_invert_line(line, Flag.AND_NEXT, Flag.OR_NEXT) for line in chained]
    return and_lines + [last] + or_lines + [last]


def apply_accumulator_pass(group: list[Condition], lines: list[str]) -> list[str]:
    """Apply whichever Delta/Mem rewrite the group qualifies for."""
    if not delta_check_available(group):
        return lines
    if is_add_sub_group(group):
        return apply_delta_mem_check(lines, add_sentinel=True)
    return apply_and_or_next_check(lines)
