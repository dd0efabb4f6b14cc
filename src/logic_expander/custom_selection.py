"""Manual address/bit picker used by customized expansion lines."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Union

from .grammar import Size

logger = logging.getLogger(__name__)

ROW_SPAN = 0x10
LINE_COUNT_EXCEEDED = "Line count would be exceeded."


@dataclass
class BitSelection:
    """Per-byte state for single-bit and BitCount lines."""
    bit_count: bool = False
    bits: set[int] = field(default_factory=set)


@dataclass
class NibbleSelection:
    """Per-byte state for Lower4/Upper4 lines."""
    upper: bool = False
    lower: bool = False


@dataclass
class StrideSelection:
    """State of one stride-aligned slot for byte/word/dword lines."""
    active: bool = False


ByteSelection = Union[BitSelection, NibbleSelection, StrideSelection]


@dataclass
class CustomSelectionData:
    """Picker state for one expansion line."""
    max_selections: int
    size: Size
    selected_count: int = 0
    custom_rows: dict[int, dict[int, ByteSelection]] = field(default_factory=dict)
    warning: str | None = None


def row_base(address: int) -> int:
    return address & ~(ROW_SPAN - 1)


def row_count(field_size: int) -> int:
    return -(-field_size // ROW_SPAN)


def _new_row(size: Size) -> dict[int, ByteSelection]:
    if size.is_bit:
        return {offset: BitSelection() for offset in range(ROW_SPAN)}
    if size.is_nibble:
        return {offset: NibbleSelection() for offset in range(ROW_SPAN)}
    stride = size.stride
    return {i * stride: StrideSelection() for i in range(ROW_SPAN // stride)}


def init_rows(data: CustomSelectionData, start_address: int, field_size: int) -> None:
    """Create the rows covering ``field_size`` bytes from ``start_address``'s row.

    Rows that already exist keep their selections.
    """
    base = row_base(start_address)
    for row_idx in range(row_count(field_size)):
        row_addr = base + row_idx * ROW_SPAN
        if row_addr not in data.custom_rows:
            data.custom_rows[row_addr] = _new_row(data.size)


def count_selections(data: CustomSelectionData) -> int:
    """Count selections by full re-scan. A BitCount byte counts once."""
    count = 0
    for row in data.custom_rows.values():
        for entry in row.values():
            if isinstance(entry, BitSelection):
                count += 1 if entry.bit_count else len(entry.bits)
            elif isinstance(entry, NibbleSelection):
                count += int(entry.upper) + int(entry.lower)
            elif entry.active:
                count += 1
    return count


def recount(data: CustomSelectionData) -> int:
    data.selected_count = count_selections(data)
    return data.selected_count


def selections(data: CustomSelectionData) -> list[tuple[int, Size]]:
    """Flatten selections to ``(address, size)`` in ascending address order."""
    result: list[tuple[int, Size]] = []
    for row_addr in sorted(data.custom_rows):
        row = data.custom_rows[row_addr]
        for offset in sorted(row):
            entry = row[offset]
            addr = row_addr + offset
            if isinstance(entry, BitSelection):
                if entry.bit_count:
                    result.append((addr, Size.BIT_COUNT))
                else:
                    result.extend((addr, Size.bit(b)) for b in sorted(entry.bits))
            elif isinstance(entry, NibbleSelection):
                if entry.upper:
                    result.append((addr, Size.UPPER4))
                if entry.lower:
                    result.append((addr, Size.LOWER4))
            elif entry.active:
                result.append((addr, data.size))
    return result


def _guarded(data: CustomSelectionData, row_addr: int, mutate) -> bool:
    """Apply ``mutate`` to a row, undoing it if it overruns the selection limit."""
    row = data.custom_rows.get(row_addr)
    if row is None:
        return False

    before = data.selected_count
    snapshot = copy.deepcopy(row)
    if mutate(row) is False:
        return False

    after = recount(data)
    if after > data.max_selections and after > before:
        data.custom_rows[row_addr] = snapshot
        recount(data)
        data.warning = LINE_COUNT_EXCEEDED
        logger.warning("%s (%d/%d)", LINE_COUNT_EXCEEDED, after, data.max_selections)
        return False

    data.warning = None
    return True


# ── Bit selectors ─────────────────────────────────────────────────


def toggle_bit(data: CustomSelectionData, row_addr: int, offset: int, bit: int) -> bool:
    """Toggle one bit; the 8th bit promotes to BitCount, any removal demotes."""
    def mutate(row):
        entry = row.get(offset)
        if not isinstance(entry, BitSelection) or not 0 <= bit <= 7:
            return False
        if bit in entry.bits:
            entry.bits.discard(bit)
        else:
            entry.bits.add(bit)
        entry.bit_count = len(entry.bits) == 8
        return True

    return _guarded(data, row_addr, mutate)


def toggle_bit_count(data: CustomSelectionData, row_addr: int, offset: int) -> bool:
    """Select or clear all eight bits of a byte at once."""
    def mutate(row):
        entry = row.get(offset)
        if not isinstance(entry, BitSelection):
            return False
        entry.bit_count = not entry.bit_count
        entry.bits = set(range(8)) if entry.bit_count else set()
        return True

    return _guarded(data, row_addr, mutate)


def toggle_skip(data: CustomSelectionData, row_addr: int, offset: int) -> bool:
    """Clear every selection on one byte."""
    def mutate(row):
        entry = row.get(offset)
        if not isinstance(entry, BitSelection):
            return False
        entry.bit_count = False
        entry.bits = set()
        return True

    return _guarded(data, row_addr, mutate)


# ── Nibbles ───────────────────────────────────────────────────────


def _toggle_nibble(data: CustomSelectionData, row_addr: int, offset: int, attr: str) -> bool:
    def mutate(row):
        entry = row.get(offset)
        if not isinstance(entry, NibbleSelection):
            return False
        setattr(entry, attr, not getattr(entry, attr))
        return True

    return _guarded(data, row_addr, mutate)


def _toggle_all_nibbles(data: CustomSelectionData, row_addr: int, attr: str) -> bool:
    def mutate(row):
        entries = [e for e in row.values() if isinstance(e, NibbleSelection)]
        if not entries:
            return False
        target = not all(getattr(e, attr) for e in entries)
        for entry in entries:
            setattr(entry, attr, target)
        return True

    return _guarded(data, row_addr, mutate)


def toggle_upper(data: CustomSelectionData, row_addr: int, offset: int) -> bool:
    return _toggle_nibble(data, row_addr, offset, "upper")


def toggle_lower(data: CustomSelectionData, row_addr: int, offset: int) -> bool:
    return _toggle_nibble(data, row_addr, offset, "lower")


def toggle_all_upper(data: CustomSelectionData, row_addr: int) -> bool:
    """Select every upper nibble in the row, or clear them if all are set."""
    return _toggle_all_nibbles(data, row_addr, "upper")


def toggle_all_lower(data: CustomSelectionData, row_addr: int) -> bool:
    """Select every lower nibble in the row, or clear them if all are set."""
    return _toggle_all_nibbles(data, row_addr, "lower")


# ── Byte / word / dword slots ─────────────────────────────────────


def toggle_standard(data: CustomSelectionData, row_addr: int, offset: int) -> bool:
    def mutate(row):
        entry = row.get(offset)
        if not isinstance(entry, StrideSelection):
            return False
        entry.active = not entry.active
        return True

    return _guarded(data, row_addr, mutate)


def toggle_all_standard(data: CustomSelectionData, row_addr: int) -> bool:
    """Select every slot in the row, or clear them if all are set."""
    def mutate(row):
        entries = [e for e in row.values() if isinstance(e, StrideSelection)]
        if not entries:
            return False
        target = not all(e.active for e in entries)
        for entry in entries:
            entry.active = target
        return True

    return _guarded(data, row_addr, mutate)
