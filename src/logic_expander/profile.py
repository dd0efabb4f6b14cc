"""Generation profiles — load, validate and apply YAML expansion recipes."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from . import custom_selection
from .expansion import DEFAULT_FIELD_SIZES, TABS
from .grammar import parse_number
from .session import LogicSession


@dataclass
class SelectionEntry:
    """One manual pick in the custom address/bit picker."""
    address: str
    bits: list[int] = field(default_factory=list)
    bit_count: bool = False
    upper: bool = False
    lower: bool = False


@dataclass
class LineExpansion:
    """Settings for one member of an expanded group, in group order."""
    active_tab: str | None = None
    arithmetic_increment: str = ""
    custom_field_size: str = ""
    select: list[SelectionEntry] = field(default_factory=list)


@dataclass
class GroupExpansion:
    """An expansion to open and confirm on the group led by ``line``."""
    line: int
    generated_groups: int = 1
    delta_check: bool | None = None
    lines: list[LineExpansion] = field(default_factory=list)


@dataclass
class GenerationProfile:
    """Complete generation profile loaded from YAML."""
    name: str
    compress_bits: bool = True
    remember_recall: bool = True
    delta_check: bool = True
    custom_field_size: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_FIELD_SIZES)
    )
    expansions: list[GroupExpansion] = field(default_factory=list)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _parse_selection(data: dict[str, Any]) -> SelectionEntry:
    return SelectionEntry(
        address=_text(data.get("address")),
        bits=list(data.get("bits", [])),
        bit_count=bool(data.get("bit_count", False)),
        upper=bool(data.get("upper", False)),
        lower=bool(data.get("lower", False)),
    )


def _parse_expansion(data: dict[str, Any]) -> GroupExpansion:
    lines = [
        LineExpansion(
            active_tab=ln.get("active_tab"),
            arithmetic_increment=_text(ln.get("arithmetic_increment")),
            custom_field_size=_text(ln.get("custom_field_size")),
            select=[_parse_selection(s) for s in ln.get("select", [])],
        )
        for ln in data.get("lines", [])
    ]
    return GroupExpansion(
        line=int(data["line"]),
        generated_groups=data.get("generated_groups", 1),
        delta_check=data.get("delta_check"),
        lines=lines,
    )


def load_profile(path: str | Path) -> GenerationProfile:
    """Load a generation profile from a YAML file.

    Args:
        path: Path to the YAML profile file.

    Returns:
        A GenerationProfile instance.

    Raises:
        FileNotFoundError: If the profile file does not exist.
        ValueError: If the profile is not a mapping or an expansion has no line.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Profile file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError("Profile YAML must be a mapping at the top level.")

    generation = data.get("generation", {}) or {}
    defaults = data.get("expansion_defaults", {}) or {}

    field_sizes = dict(DEFAULT_FIELD_SIZES)
    for key, value in (defaults.get("custom_field_size", {}) or {}).items():
        field_sizes[key] = _text(value)

    expansions: list[GroupExpansion] = []
    for entry in data.get("expansions", []) or []:
        if "line" not in entry:
            raise ValueError("Every expansion entry needs a 'line'.")
        expansions.append(_parse_expansion(entry))

    return GenerationProfile(
        name=data.get("name", ""),
        compress_bits=generation.get("compress_bits", True),
        remember_recall=generation.get("remember_recall", True),
        delta_check=defaults.get("delta_check", True),
        custom_field_size=field_sizes,
        expansions=expansions,
    )


def validate_profile(profile: GenerationProfile) -> list[str]:
    """Validate a loaded profile.

    Returns a list of validation error messages. Empty list means valid.
    """
    errors: list[str] = []

    if not profile.name:
        errors.append("name is required and must not be empty.")

    for key in ("bit", "nibble", "default"):
        size = parse_number(profile.custom_field_size.get(key))
        if size is None or size <= 0:
            errors.append(f"custom_field_size.{key} must be a positive number.")

    for exp in profile.expansions:
        where = f"expansion for line {exp.line}"
        if exp.line < 1:
            errors.append(f"{where}: line must be >= 1.")
        if not isinstance(exp.generated_groups, int) or exp.generated_groups < 1:
            errors.append(f"{where}: generated_groups must be an integer >= 1.")

        for idx, ln in enumerate(exp.lines):
            if ln.active_tab is not None and ln.active_tab not in TABS:
                errors.append(
                    f"{where}, line {idx}: active_tab '{ln.active_tab}' is not valid. "
                    f"Must be one of: {', '.join(TABS)}."
                )
            if ln.arithmetic_increment and parse_number(ln.arithmetic_increment) is None:
                errors.append(f"{where}, line {idx}: arithmetic_increment is not a number.")
            if ln.custom_field_size:
                size = parse_number(ln.custom_field_size)
                if size is None or size <= 0:
                    errors.append(f"{where}, line {idx}: custom_field_size must be positive.")
            if ln.arithmetic_increment and ln.select:
                errors.append(f"{where}, line {idx}: use either arithmetic_increment or select.")
            for sel in ln.select:
                if parse_number(sel.address) is None:
                    errors.append(f"{where}, line {idx}: select address '{sel.address}' is not a number.")
                if any(not isinstance(b, int) or not 0 <= b <= 7 for b in sel.bits):
                    errors.append(f"{where}, line {idx}: bits must be 0-7.")

    return errors


def new_session(profile: GenerationProfile | None = None) -> LogicSession:
    """A session carrying the profile's expansion defaults."""
    if profile is None:
        return LogicSession()
    return LogicSession(
        delta_check_default=profile.delta_check,
        field_sizes=profile.custom_field_size,
    )


def _apply_selection(session: LogicSession, line: int, idx: int, sel: SelectionEntry) -> bool:
    address = parse_number(sel.address)
    if address is None or address < 0:
        return False
    data = session.expansion(line).line_configs[idx].custom_data
    # Picks may lie outside the rows opened from the line's own address.
    custom_selection.init_rows(data, address, 1)
    row = custom_selection.row_base(address)
    offset = address - row

    def toggle(name: str, *args) -> bool:
        return session.toggle_selection(line, idx, name, row, offset, *args)

    if data.size.is_bit:
        if sel.bit_count:
            return toggle("bit_count")
        return all(toggle("bit", bit) for bit in sel.bits)
    if data.size.is_nibble:
        ok = True
        if sel.upper:
            ok = toggle("upper") and ok
        if sel.lower:
            ok = toggle("lower") and ok
        return ok
    return toggle("standard")


def _apply_line(
    session: LogicSession,
    exp: GroupExpansion,
    idx: int,
    ln: LineExpansion,
) -> str | None:
    where = f"line {exp.line}, member {idx}"
    if ln.active_tab and not session.update_line_config(exp.line, idx, "active_tab", ln.active_tab):
        return f"{where}: tab '{ln.active_tab}' is not available."
    if ln.arithmetic_increment:
        session.update_line_config(exp.line, idx, "arithmetic_increment", ln.arithmetic_increment)
    if ln.custom_field_size:
        session.update_line_config(exp.line, idx, "custom_field_size", ln.custom_field_size)
    if not ln.select:
        return None

    if not session.open_line_customization(exp.line, idx):
        return f"{where}: customization could not be opened."
    for sel in ln.select:
        if not _apply_selection(session, exp.line, idx, sel):
            return f"{where}: selection at {sel.address} was rejected."
    if not session.confirm_line_customization(exp.line, idx):
        return f"{where}: {session.warning}"
    return None


def apply_profile_expansions(session: LogicSession, profile: GenerationProfile) -> list[str]:
    """Open, configure and confirm every expansion listed in the profile.

    Entries that cannot be applied are cancelled and reported; the rest of
    the profile is still applied.

    Returns:
        Warning messages, one per entry that was skipped.
    """
    warnings: list[str] = []
    for exp in profile.expansions:
        if session.open_expansion(exp.line) is None:
            warnings.append(f"line {exp.line}: not an expandable group leader.")
            continue

        session.update_expansion_field(exp.line, "generated_groups", exp.generated_groups)
        if exp.delta_check is not None:
            session.update_expansion_field(exp.line, "delta_check", exp.delta_check)

        problem = None
        for idx, ln in enumerate(exp.lines):
            problem = _apply_line(session, exp, idx, ln)
            if problem:
                break

        if problem is None and not session.confirm_expansion(exp.line):
            problem = f"line {exp.line}: {session.warning}"
        if problem:
            session.cancel_expansion(exp.line)
            warnings.append(problem)
    return warnings
