"""Logic session — owns the condition list, open expansions and group colours."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from . import expansion, groups
from .bit_compression import compress_bits as compress_bit_runs
from .expansion import ExpansionConfig
from .grammar import (
    OPERAND_CMPS,
    PREDICATE_CMPS,
    Condition,
    Flag,
    OperandKind,
    Size,
    default_condition,
    normalize_hex_input,
    parse_logic,
    parse_number,
    serialize_condition,
    serialize_logic,
    split_logic,
    validate_type_change,
)
from .remember_recall import RROptimizationResult, apply_rr_optimization

logger = logging.getLogger(__name__)

# Placeholder group ids for rows created before renumbering.
NEW_ROW_GROUP = 0
COPIED_GROUP = -1

CONDITION_FIELDS = (
    "flag",
    "left_kind",
    "left_size",
    "left_literal",
    "cmp",
    "right_kind",
    "right_size",
    "right_literal",
    "hits",
)


@dataclass
class ConditionRow:
    """View-model for one condition, produced by :meth:`LogicSession.project_rows`."""
    line_id: int
    group_id: int
    text: str
    is_leader: bool
    group_size: int
    can_link: bool
    can_unlink: bool
    can_expand: bool
    color: int | None
    expanded: bool
    expanded_lines: list[str] = field(default_factory=list)
    expansion_open: bool = False


@dataclass
class GenerationResult:
    logic: str
    lines: list[str]
    uncompressed_lines: int
    bits_saved: int = 0
    rr: RROptimizationResult | None = None


class LogicSession:
    """Single-actor editing session over one logic blob.

    Every structural change renumbers line ids and closes any open
    expansion, since the open config is keyed by the leader's line id.
    """

    def __init__(
        self,
        delta_check_default: bool = True,
        field_sizes: dict[str, str] | None = None,
    ) -> None:
        self.conditions: list[Condition] = []
        self.expansions: dict[int, ExpansionConfig] = {}
        self.group_colors: dict[int, int] = {}
        self.warning: str | None = None
        self.flash_line_id: int | None = None
        self.delta_check_default = delta_check_default
        self.field_sizes = dict(field_sizes or {})

    # ── Loading ───────────────────────────────────────────────────

    def load(self, text: str) -> int:
        """Replace all state with a fresh parse of ``text``.

        Returns:
            Number of conditions parsed.
        """
        self.conditions = parse_logic(text)
        for idx, condition in enumerate(self.conditions):
            condition.line_id = idx + 1
            condition.group_id = idx + 1
        self.expansions = {}
        self.group_colors = {}
        self._clear_messages()

        groups.auto_link_chaining_flags(self.conditions)
        self._color_linked_groups()

        logger.info(
            "Loaded %d condition(s) in %d group(s)",
            len(self.conditions), len(groups.iter_groups(self.conditions)),
        )
        return len(self.conditions)

    def clear(self) -> None:
        self.conditions = []
        self.expansions = {}
        self.group_colors = {}
        self._clear_messages()

    # ── Internal helpers ──────────────────────────────────────────

    def _clear_messages(self) -> None:
        self.warning = None
        self.flash_line_id = None

    def _warn(self, message: str, line_id: int | None = None) -> None:
        self.warning = message
        self.flash_line_id = line_id
        logger.warning(message)

    def _coerce(self, enum_cls, value, line_id: int):
        """Convert a field value to ``enum_cls``, warning on unknown input."""
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)
        except ValueError:
            self._warn(f"'{value}' is not a valid {enum_cls.__name__}.", line_id)
            return None

    def _assign_color(self, group_id: int) -> None:
        if group_id not in self.group_colors:
            self.group_colors[group_id] = len(self.group_colors) % 2

    def _color_linked_groups(self) -> None:
        for group in groups.iter_groups(self.conditions):
            if len(group) > 1:
                self._assign_color(group[-1].group_id)

    def _renumber(self) -> None:
        old_ids = [c.group_id for c in self.conditions]
        groups.recalculate_line_and_group_ids(self.conditions)

        colors: dict[int, int] = {}
        for old_id, condition in zip(old_ids, self.conditions):
            if old_id in self.group_colors and condition.group_id not in colors:
                colors[condition.group_id] = self.group_colors[old_id]
        self.group_colors = colors

        if self.expansions:
            logger.debug("Structure changed; closing %d open expansion(s)", len(self.expansions))
            self.expansions = {}

    def _group(self, line_id: int) -> list[Condition]:
        return groups.group_of(self.conditions, line_id)

    def _leader(self, line_id: int) -> Condition | None:
        condition = groups.find_condition(self.conditions, line_id)
        if condition is None or not groups.is_group_leader(self.conditions, condition):
            return None
        return condition

    # ── Row operations ────────────────────────────────────────────

    def add_condition(self) -> Condition:
        """Append a blank ``0xH0=0`` row."""
        condition = default_condition()
        condition.group_id = NEW_ROW_GROUP
        self.conditions.append(condition)
        self._renumber()
        return condition

    def insert_condition(self, index: int) -> Condition:
        """Insert a blank row after position ``index``."""
        position = max(0, min(index + 1, len(self.conditions)))
        condition = default_condition()
        condition.group_id = NEW_ROW_GROUP
        self.conditions.insert(position, condition)
        self._renumber()
        return condition

    def copy_group(self, line_id: int) -> list[Condition]:
        """Duplicate the group holding ``line_id`` directly below it.

        The copy keeps its linking but not its expansion.
        """
        members = self._group(line_id)
        if not members:
            return []

        copies = []
        for member in members:
            duplicate = copy.deepcopy(member)
            duplicate.group_id = COPIED_GROUP
            duplicate.expanded = False
            duplicate.expanded_lines = []
            copies.append(duplicate)

        position = groups.index_of(self.conditions, members[-1].line_id) + 1
        self.conditions[position:position] = copies
        self._renumber()
        if len(copies) > 1:
            self._assign_color(copies[-1].group_id)
        return copies

    def remove_group(self, line_id: int) -> int:
        """Remove the whole group holding ``line_id``; returns rows removed."""
        members = self._group(line_id)
        if not members:
            return 0
        doomed = {id(m) for m in members}
        self.conditions = [c for c in self.conditions if id(c) not in doomed]
        self._renumber()
        return len(members)

    def update_condition(self, line_id: int, name: str, value) -> bool:
        """Edit one field of a condition in place.

        Addresses and values are normalized as they are typed. A kind that
        Add Address does not allow is rejected, and the row is flashed.
        """
        condition = groups.find_condition(self.conditions, line_id)
        if condition is None or name not in CONDITION_FIELDS:
            return False
        self._clear_messages()

        if name == "flag":
            return self._update_flag(condition, value)

        if name in ("left_kind", "right_kind"):
            kind = self._coerce(OperandKind, value, line_id)
            if kind is None:
                return False
            if name == "left_kind" and not validate_type_change(condition.flag, kind):
                self._warn(f"{kind.value} is not allowed with Add Address.", line_id)
                return False
            operand = condition.left if name == "left_kind" else condition.right
            operand.kind = kind
            if kind is OperandKind.RECALL:
                operand.size = None
                operand.literal = ""
            else:
                operand.size = operand.size or Size.BITS8
                operand.literal = normalize_hex_input(operand.literal, kind.is_memory)
            return True

        if name in ("left_size", "right_size"):
            operand = condition.left if name == "left_size" else condition.right
            size = self._coerce(Size, value, line_id)
            if size is None:
                return False
            operand.size = size
            return True

        if name in ("left_literal", "right_literal"):
            operand = condition.left if name == "left_literal" else condition.right
            operand.literal = normalize_hex_input(str(value), operand.kind.is_memory)
            return True

        if name == "cmp":
            cmp = str(value).strip()
            allowed = OPERAND_CMPS + ("",) if condition.flag.is_operand else PREDICATE_CMPS
            if cmp not in allowed:
                self._warn(f"Comparison '{cmp}' is not valid for this flag.", line_id)
                return False
            condition.cmp = cmp
            return True

        # hits
        hits = parse_number(str(value))
        condition.hits = hits if hits is not None and hits > 0 else 0
        return True

    def _update_flag(self, condition: Condition, value) -> bool:
        flag = self._coerce(Flag, value, condition.line_id)
        if flag is None:
            return False
        if not validate_type_change(flag, condition.left.kind):
            self._warn(
                f"{condition.left.kind.value} is not allowed with Add Address.",
                condition.line_id,
            )
            return False

        condition.flag = flag
        if flag.is_operand:
            condition.cmp = ""
            condition.hits = 0
        elif condition.cmp not in PREDICATE_CMPS:
            condition.cmp = "="

        if flag.is_chaining:
            if groups.auto_link_chaining_flags(self.conditions):
                self._color_linked_groups()
        return True

    # ── Linking ───────────────────────────────────────────────────

    def can_link(self, line_id: int) -> bool:
        return groups.can_link(self.conditions, line_id)

    def link(self, line_id: int) -> bool:
        if not groups.link(self.conditions, line_id):
            return False
        condition = groups.find_condition(self.conditions, line_id)
        self._drop_expansions_in(self._group(condition.line_id))
        self._assign_color(condition.group_id)
        return True

    def unlink(self, line_id: int) -> bool:
        members = self._group(line_id)
        if not groups.unlink(self.conditions, line_id):
            return False
        self._drop_expansions_in(members)
        # Singleton groups are not coloured.
        for member in members:
            if len(groups.get_group_lines(self.conditions, member.group_id)) < 2:
                self.group_colors.pop(member.group_id, None)
        return True

    def _drop_expansions_in(self, members: list[Condition]) -> None:
        for member in members:
            self.expansions.pop(member.line_id, None)

    # ── Expansion ─────────────────────────────────────────────────

    def expansion(self, line_id: int) -> ExpansionConfig | None:
        return self.expansions.get(line_id)

    def open_expansion(self, line_id: int) -> ExpansionConfig | None:
        """Open an expansion for the group led by ``line_id``.

        Any other open expansion is closed first.
        """
        leader = self._leader(line_id)
        if leader is None or not expansion.can_expand(leader):
            return None
        group = self._group(line_id)
        if any(m.expanded for m in group):
            return None

        self.expansions = {}
        config = expansion.new_expansion_config(
            group,
            delta_check=self.delta_check_default,
            field_sizes=self.field_sizes,
        )
        self.expansions[line_id] = config
        logger.debug("Opened expansion for group %d (%d line(s))", line_id, len(group))
        return config

    def cancel_expansion(self, line_id: int) -> None:
        self.expansions.pop(line_id, None)

    def _with_config(self, line_id: int, action, *args) -> bool:
        config = self.expansions.get(line_id)
        if config is None:
            return False
        config.warning = None
        ok = action(config, *args)
        if config.warning:
            self.warning = config.warning
        return bool(ok) if ok is not None else True

    def update_expansion_field(self, line_id: int, name: str, value) -> bool:
        return self._with_config(line_id, expansion.update_expansion_field, name, value)

    def update_line_config(self, line_id: int, line_index: int, name: str, value: str) -> bool:
        group = self._group(line_id)
        if not 0 <= line_index < len(group):
            return False
        return self._with_config(
            line_id, expansion.update_line_config, line_index, group[line_index], name, value
        )

    def open_line_customization(self, line_id: int, line_index: int) -> bool:
        group = self._group(line_id)
        if not 0 <= line_index < len(group):
            return False
        return self._with_config(
            line_id, expansion.open_line_customization, line_index, group[line_index]
        )

    def toggle_selection(self, line_id: int, line_index: int, toggle: str, *args) -> bool:
        """Apply a picker toggle (a key of ``expansion.PICKER_TOGGLES``).

        A toggle past the selection limit is rejected and its warning kept
        on the session.
        """
        return self._with_config(
            line_id, expansion.toggle_line_selection, line_index, toggle, *args
        )

    def confirm_line_customization(self, line_id: int, line_index: int) -> bool:
        return self._with_config(line_id, expansion.confirm_line_customization, line_index)

    def cancel_line_customization(self, line_id: int, line_index: int) -> bool:
        return self._with_config(line_id, expansion.cancel_line_customization, line_index)

    def cancel_all_customizations(self, line_id: int) -> bool:
        return self._with_config(line_id, expansion.cancel_all_customizations)

    def preview_expansion(self, line_id: int) -> list[str]:
        config = self.expansions.get(line_id)
        if config is None:
            return []
        return expansion.build_expanded_lines(self._group(line_id), config)

    def confirm_expansion(self, line_id: int) -> bool:
        """Write the generated lines onto the leader and close the expansion."""
        config = self.expansions.get(line_id)
        leader = self._leader(line_id)
        if config is None or leader is None:
            return False
        if not expansion.customizations_complete(config):
            self.warning = config.warning
            return False

        group = self._group(line_id)
        lines = expansion.build_expanded_lines(group, config)
        for member in group:
            member.expanded = True
            member.expanded_lines = []
        leader.expanded_lines = lines
        del self.expansions[line_id]
        logger.info("Confirmed expansion of group %d: %d line(s)", line_id, len(lines))
        return True

    def reopen_expansion(self, line_id: int) -> bool:
        """Discard a confirmed expansion so the group can be edited again."""
        group = self._group(line_id)
        if not any(m.expanded for m in group):
            return False
        for member in group:
            member.expanded = False
            member.expanded_lines = []
        return True

    # ── Output ────────────────────────────────────────────────────

    def generate_lines(self) -> list[str]:
        """Every group's expanded lines, or its plain serialization."""
        lines: list[str] = []
        for group in groups.iter_groups(self.conditions):
            leader = group[-1]
            if leader.expanded and leader.expanded_lines:
                lines.extend(leader.expanded_lines)
            else:
                lines.extend(serialize_condition(c) for c in group)
        return lines

    def generate_logic(self, compress_bits: bool = True, optimize_rr: bool = True) -> GenerationResult:
        """Concatenate all groups, then run the optional compression passes.

        The Remember/Recall rewrite is only adopted when it saves characters.
        """
        lines = self.generate_lines()
        result = GenerationResult(
            logic=serialize_logic(lines),
            lines=lines,
            uncompressed_lines=len(lines),
        )

        if compress_bits:
            compressed = compress_bit_runs(lines)
            result.bits_saved = len(lines) - len(compressed)
            result.lines = compressed
            result.logic = serialize_logic(compressed)

        if optimize_rr:
            rr = apply_rr_optimization(result.logic)
            result.rr = rr
            if rr.savings > 0:
                result.logic = rr.optimized_logic
                result.lines = split_logic(rr.optimized_logic)

        logger.info(
            "Generated %d line(s) (%d before compression)",
            len(result.lines), result.uncompressed_lines,
        )
        return result

    def project_rows(self) -> list[ConditionRow]:
        """State-to-view projection for the host to render after each change."""
        rows = []
        for condition in self.conditions:
            members = groups.get_group_lines(self.conditions, condition.group_id)
            is_leader = groups.is_group_leader(self.conditions, condition)
            rows.append(
                ConditionRow(
                    line_id=condition.line_id,
                    group_id=condition.group_id,
                    text=serialize_condition(condition),
                    is_leader=is_leader,
                    group_size=len(members),
                    can_link=groups.can_link(self.conditions, condition.line_id),
                    can_unlink=members[-1] is not condition,
                    can_expand=is_leader and expansion.can_expand(condition),
                    color=self.group_colors.get(condition.group_id),
                    expanded=condition.expanded,
                    expanded_lines=list(condition.expanded_lines),
                    expansion_open=condition.line_id in self.expansions,
                )
            )
        return rows
