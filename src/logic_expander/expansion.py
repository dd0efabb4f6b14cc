"""Expansion engine — generates repeated concrete lines from a link group."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from . import custom_selection
from .custom_selection import (
    CustomSelectionData,
    init_rows,
    recount,
    selections,
)
from .delta_mem import apply_accumulator_pass
from .grammar import (
    Condition,
    Operand,
    OperandKind,
    Size,
    parse_number,
    serialize_condition,
)

logger = logging.getLogger(__name__)

TAB_LEFT = "left"
TAB_RIGHT = "right"
TAB_BOTH = "both"
TABS = (TAB_LEFT, TAB_RIGHT, TAB_BOTH)

DEFAULT_FIELD_SIZES: dict[str, str] = {
    "bit": "0x08",
    "nibble": "0x20",
    "default": "0x50",
}

CUSTOM_ADDRESS_PAD = 4

# Picker toggles by name; each takes the row address plus its own arguments.
PICKER_TOGGLES = {
    "bit": custom_selection.toggle_bit,
    "bit_count": custom_selection.toggle_bit_count,
    "skip": custom_selection.toggle_skip,
    "upper": custom_selection.toggle_upper,
    "lower": custom_selection.toggle_lower,
    "all_upper": custom_selection.toggle_all_upper,
    "all_lower": custom_selection.toggle_all_lower,
    "standard": custom_selection.toggle_standard,
    "all_standard": custom_selection.toggle_all_standard,
}


@dataclass
class LineConfig:
    """Per-member expansion settings."""
    line_id: int
    active_tab: str = TAB_LEFT
    arithmetic_increment: str = ""
    custom_field_size: str = ""
    customized: bool = False
    custom_data: CustomSelectionData | None = None


@dataclass
class ExpansionConfig:
    """An open expansion for one group, keyed by its leader's line id."""
    leader_id: int
    generated_groups: int = 1
    delta_check: bool = True
    line_configs: list[LineConfig] = field(default_factory=list)
    warning: str | None = None


# ── Validation gates ──────────────────────────────────────────────


def can_expand(condition: Condition) -> bool:
    """A line needs a left address or value, and not two Values or two Recalls."""
    left, right = condition.left, condition.right
    if not left.literal.strip():
        return False
    if left.kind is OperandKind.VALUE and right.kind is OperandKind.VALUE:
        return False
    if left.kind is OperandKind.RECALL and right.kind is OperandKind.RECALL:
        return False
    return True


def available_tabs(condition: Condition) -> list[str]:
    """Which operand sides may vary across repetitions."""
    left, right = condition.left, condition.right
    tabs: list[str] = []
    if left.kind is not OperandKind.RECALL:
        tabs.append(TAB_LEFT)
    if condition.cmp and right.kind is not OperandKind.RECALL:
        tabs.append(TAB_RIGHT)
        if left.kind.is_memory and right.kind.is_memory and left.size == right.size:
            tabs.append(TAB_BOTH)
    return tabs


def _varies_left(tab: str) -> bool:
    return tab in (TAB_LEFT, TAB_BOTH)


def _varies_right(tab: str) -> bool:
    return tab in (TAB_RIGHT, TAB_BOTH)


def _varied_operand(condition: Condition, tab: str) -> Operand:
    return condition.left if _varies_left(tab) else condition.right


def default_field_size(size: Size | None, field_sizes: dict[str, str] | None = None) -> str:
    sizes = {**DEFAULT_FIELD_SIZES, **(field_sizes or {})}
    if size is not None and size.is_bit:
        return sizes["bit"]
    if size is not None and size.is_nibble:
        return sizes["nibble"]
    return sizes["default"]


def new_expansion_config(
    group: list[Condition],
    delta_check: bool = True,
    field_sizes: dict[str, str] | None = None,
) -> ExpansionConfig:
    """Build a fresh config with one default LineConfig per group member."""
    leader = max(group, key=lambda c: c.line_id)
    line_configs = []
    for condition in group:
        tabs = available_tabs(condition)
        line_configs.append(
            LineConfig(
                line_id=condition.line_id,
                active_tab=tabs[0] if tabs else TAB_LEFT,
                custom_field_size=default_field_size(condition.left.size, field_sizes),
            )
        )
    return ExpansionConfig(
        leader_id=leader.line_id,
        delta_check=delta_check,
        line_configs=line_configs,
    )


# ── Line generation ───────────────────────────────────────────────


def _shift_operand(operand: Operand, offset: int) -> Operand:
    if operand.kind is OperandKind.VALUE:
        try:
            base = int(operand.literal, 10)
        except ValueError:
            base = 0
        return replace(operand, literal=str(base + offset))

    if not operand.kind.is_memory:
        return operand

    address = operand.address + offset
    if address < 0:
        logger.warning(
            "Address %s%+d is negative; clamping to 0x0", operand.literal, offset
        )
        address = 0
    return replace(operand, literal=f"0x{address:X}")


def generate_arithmetic_line(condition: Condition, line_config: LineConfig, group_idx: int) -> str:
    """Offset the active side(s) by ``increment * group_idx``.

    An increment that does not parse leaves the line unmodified.
    """
    increment = parse_number(line_config.arithmetic_increment)
    if increment is None:
        return serialize_condition(condition)

    offset = increment * group_idx
    left, right = condition.left, condition.right
    if _varies_left(line_config.active_tab):
        left = _shift_operand(left, offset)
    if _varies_right(line_config.active_tab) and condition.cmp:
        right = _shift_operand(right, offset)
    return serialize_condition(replace(condition, left=left, right=right))


def generate_custom_lines(condition: Condition, line_config: LineConfig, group_idx: int) -> list[str]:
    """The ``group_idx``-th manual selection rendered as a line, if there is one."""
    data = line_config.custom_data
    if data is None:
        return []

    picked = selections(data)
    if group_idx >= len(picked):
        return []

    address, size = picked[group_idx]
    literal = f"0x{address:0{CUSTOM_ADDRESS_PAD}X}"
    left, right = condition.left, condition.right
    if _varies_left(line_config.active_tab):
        left = Operand(left.kind, size, literal)
    if _varies_right(line_config.active_tab) and condition.cmp:
        right = Operand(right.kind, size, literal)
    return [serialize_condition(replace(condition, left=left, right=right))]


def expand_group(group: list[Condition], config: ExpansionConfig) -> list[str]:
    """Generate every repetition of the group, repetition-major.

    Each member contributes custom lines when customized, an arithmetic line
    when it has an increment, and an unmodified copy otherwise.
    """
    lines: list[str] = []
    for group_idx in range(config.generated_groups):
        for condition, line_config in zip(group, config.line_configs):
            if line_config.customized and line_config.custom_data is not None:
                lines.extend(generate_custom_lines(condition, line_config, group_idx))
            elif line_config.arithmetic_increment.strip():
                lines.append(generate_arithmetic_line(condition, line_config, group_idx))
            else:
                lines.append(serialize_condition(condition))
    return lines


def build_expanded_lines(group: list[Condition], config: ExpansionConfig) -> list[str]:
    """Expand the group and apply the Delta/Mem check when it is switched on."""
    lines = expand_group(group, config)
    if config.delta_check:
        lines = apply_accumulator_pass(group, lines)
    logger.debug(
        "Expanded group %d: %d repetition(s) -> %d lines",
        config.leader_id, config.generated_groups, len(lines),
    )
    return lines


# ── Config updates ────────────────────────────────────────────────


def update_expansion_field(config: ExpansionConfig, name: str, value) -> bool:
    """Set ``generated_groups`` or ``delta_check`` on an open expansion."""
    if name == "generated_groups":
        count = parse_number(str(value))
        if count is None or count < 1:
            return False
        config.generated_groups = count
        for line_config in config.line_configs:
            if line_config.custom_data is not None:
                line_config.custom_data.max_selections = count
        return True
    if name == "delta_check":
        config.delta_check = bool(value)
        return True
    return False


def _clear_customization(line_config: LineConfig) -> None:
    line_config.customized = False
    line_config.custom_data = None


def update_line_config(
    config: ExpansionConfig,
    line_index: int,
    condition: Condition,
    name: str,
    value: str,
) -> bool:
    """Change one member's tab, increment or custom field size.

    A non-blank increment discards any customization; a new custom field
    size discards the increment. Tabs the line does not offer are rejected
    with a warning.
    """
    if not 0 <= line_index < len(config.line_configs):
        return False
    line_config = config.line_configs[line_index]

    if name == "active_tab":
        if value not in available_tabs(condition):
            config.warning = f"Tab '{value}' is not available for this line."
            logger.warning(config.warning)
            return False
        if value != line_config.active_tab:
            line_config.active_tab = value
            _clear_customization(line_config)
        return True

    if name == "arithmetic_increment":
        line_config.arithmetic_increment = value.strip()
        if line_config.arithmetic_increment:
            _clear_customization(line_config)
        return True

    if name == "custom_field_size":
        line_config.custom_field_size = value.strip()
        line_config.arithmetic_increment = ""
        return True

    return False


# ── Customization lifecycle ───────────────────────────────────────


def open_line_customization(config: ExpansionConfig, line_index: int, condition: Condition) -> bool:
    """Prepare the address/bit picker for one member.

    Returns False without touching state when the field size is not a
    positive number or the varied side is not a memory read.
    """
    if not 0 <= line_index < len(config.line_configs):
        return False
    line_config = config.line_configs[line_index]

    field_size = parse_number(line_config.custom_field_size)
    if field_size is None or field_size <= 0:
        return False

    tab = line_config.active_tab
    if _varies_left(tab) and not condition.left.kind.is_memory:
        return False
    if _varies_right(tab) and not (condition.cmp and condition.right.kind.is_memory):
        return False

    operand = _varied_operand(condition, tab)
    data = line_config.custom_data
    if data is None or data.size is not operand.size:
        data = CustomSelectionData(
            max_selections=config.generated_groups,
            size=operand.size,
        )
        line_config.custom_data = data
    data.max_selections = config.generated_groups
    init_rows(data, operand.address, field_size)
    recount(data)

    line_config.arithmetic_increment = ""
    logger.debug(
        "Opened customization for line %d at 0x%X (%d bytes)",
        line_config.line_id, operand.address, field_size,
    )
    return True


def toggle_line_selection(config: ExpansionConfig, line_index: int, toggle: str, *args) -> bool:
    """Apply a named picker toggle to one member's open customization.

    A rejected toggle leaves its warning on the config.
    """
    if not 0 <= line_index < len(config.line_configs) or toggle not in PICKER_TOGGLES:
        return False
    data = config.line_configs[line_index].custom_data
    if data is None:
        return False
    data.warning = None
    ok = PICKER_TOGGLES[toggle](data, *args)
    if data.warning:
        config.warning = data.warning
    return ok


def confirm_line_customization(config: ExpansionConfig, line_index: int) -> bool:
    """Accept the picker only when it holds exactly one pick per repetition."""
    if not 0 <= line_index < len(config.line_configs):
        return False
    line_config = config.line_configs[line_index]
    data = line_config.custom_data
    if data is None:
        return False

    count = recount(data)
    if count != config.generated_groups:
        config.warning = (
            f"Custom selection count ({count}) must match "
            f"Generated Groups ({config.generated_groups})"
        )
        logger.warning(config.warning)
        return False

    line_config.customized = True
    config.warning = None
    return True


def cancel_line_customization(config: ExpansionConfig, line_index: int) -> None:
    if 0 <= line_index < len(config.line_configs):
        _clear_customization(config.line_configs[line_index])


def cancel_all_customizations(config: ExpansionConfig) -> None:
    for line_config in config.line_configs:
        _clear_customization(line_config)


def customizations_complete(config: ExpansionConfig) -> bool:
    """Every customized member must still hold one pick per repetition."""
    for line_config in config.line_configs:
        if not line_config.customized or line_config.custom_data is None:
            continue
        count = recount(line_config.custom_data)
        if count != config.generated_groups:
            config.warning = (
                f"Custom selection count ({count}) must match "
                f"Generated Groups ({config.generated_groups})"
            )
            logger.warning(config.warning)
            return False
    return True
