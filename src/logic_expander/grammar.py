"""Grammar codec — parses condition lines to records and serializes them back."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class Flag(Enum):
    """Combinator prefix controlling how a line combines with its neighbours."""
    NONE = ""
    PAUSE_IF = "P:"
    RESET_IF = "R:"
    RESET_NEXT_IF = "Z:"
    ADD_SOURCE = "A:"
    SUB_SOURCE = "B:"
    ADD_HITS = "C:"
    SUB_HITS = "D:"
    ADD_ADDRESS = "I:"
    AND_NEXT = "N:"
    OR_NEXT = "O:"
    MEASURED = "M:"
    MEASURED_PERCENT = "G:"
    MEASURED_IF = "Q:"
    TRIGGER = "T:"
    REMEMBER = "K:"

    @property
    def label(self) -> str:
        return FLAG_LABELS[self]

    @property
    def is_operand(self) -> bool:
        """Operand flags take an arithmetic operator instead of a comparison."""
        return self in OPERAND_FLAGS

    @property
    def is_chaining(self) -> bool:
        """Chaining flags are auto-linked with the line below."""
        return self in CHAINING_FLAGS

    @classmethod
    def from_token(cls, token: str) -> Flag | None:
        for flag in cls:
            if flag.value == token:
                return flag
        return None


FLAG_LABELS: dict[Flag, str] = {
    Flag.NONE: "",
    Flag.PAUSE_IF: "Pause If",
    Flag.RESET_IF: "Reset If",
    Flag.RESET_NEXT_IF: "Reset Next If",
    Flag.ADD_SOURCE: "Add Source",
    Flag.SUB_SOURCE: "Sub Source",
    Flag.ADD_HITS: "Add Hits",
    Flag.SUB_HITS: "Sub Hits",
    Flag.ADD_ADDRESS: "Add Address",
    Flag.AND_NEXT: "And Next",
    Flag.OR_NEXT: "Or Next",
    Flag.MEASURED: "Measured",
    Flag.MEASURED_PERCENT: "Measured %",
    Flag.MEASURED_IF: "Measured If",
    Flag.TRIGGER: "Trigger",
    Flag.REMEMBER: "Remember",
}

OPERAND_FLAGS = frozenset({Flag.ADD_SOURCE, Flag.SUB_SOURCE, Flag.ADD_ADDRESS, Flag.REMEMBER})
CHAINING_FLAGS = frozenset(
    {Flag.ADD_ADDRESS, Flag.ADD_SOURCE, Flag.SUB_SOURCE, Flag.AND_NEXT, Flag.OR_NEXT}
)


class OperandKind(Enum):
    """What an operand literal denotes."""
    MEM = "Mem"
    VALUE = "Value"
    DELTA = "Delta"
    PRIOR = "Prior"
    BCD = "BCD"
    FLOAT = "Float"
    INVERT = "Invert"
    RECALL = "Recall"

    @property
    def modifier(self) -> str:
        """Single-letter prefix written before ``0x`` (empty for plain reads)."""
        return KIND_MODIFIERS.get(self, "")

    @property
    def is_memory(self) -> bool:
        """Memory kinds carry a hex address and need a size."""
        return self in MEMORY_KINDS


KIND_MODIFIERS: dict[OperandKind, str] = {
    OperandKind.DELTA: "d",
    OperandKind.PRIOR: "p",
    OperandKind.BCD: "b",
    OperandKind.INVERT: "~",
}
MODIFIER_KINDS: dict[str, OperandKind] = {v: k for k, v in KIND_MODIFIERS.items()}

MEMORY_KINDS = frozenset(
    {
        OperandKind.MEM,
        OperandKind.DELTA,
        OperandKind.PRIOR,
        OperandKind.INVERT,
        OperandKind.BCD,
        OperandKind.FLOAT,
    }
)

# Add Address may only dereference through these kinds.
ADD_ADDRESS_KINDS = frozenset(
    {OperandKind.MEM, OperandKind.PRIOR, OperandKind.VALUE, OperandKind.RECALL}
)


class Size(Enum):
    """Operand width or bit/nibble selector."""
    BIT0 = "Bit0"
    BIT1 = "Bit1"
    BIT2 = "Bit2"
    BIT3 = "Bit3"
    BIT4 = "Bit4"
    BIT5 = "Bit5"
    BIT6 = "Bit6"
    BIT7 = "Bit7"
    LOWER4 = "Lower4"
    UPPER4 = "Upper4"
    BITS8 = "8-bit"
    BITS16 = "16-bit"
    BITS24 = "24-bit"
    BITS32 = "32-bit"
    BITS16_BE = "16-bit BE"
    BITS24_BE = "24-bit BE"
    BITS32_BE = "32-bit BE"
    BIT_COUNT = "BitCount"
    FLOAT = "Float"
    FLOAT_BE = "Float BE"
    DOUBLE32 = "Double32"
    DOUBLE32_BE = "Double32 BE"
    MBF32 = "MBF32"
    MBF32_LE = "MBF32 LE"

    @property
    def prefix(self) -> str:
        return SIZE_PREFIXES[self]

    @property
    def is_bit(self) -> bool:
        return self in BIT_SIZES

    @property
    def is_nibble(self) -> bool:
        return self in NIBBLE_SIZES

    @property
    def bit_index(self) -> int | None:
        """0-7 for single-bit selectors, None otherwise."""
        if self in SINGLE_BIT_SIZES:
            return SINGLE_BIT_SIZES.index(self)
        return None

    @property
    def stride(self) -> int:
        """Byte span of one value, used to align custom address selection."""
        if self in (Size.BITS16, Size.BITS16_BE):
            return 2
        if self in WIDE_SIZES:
            return 4
        return 1

    @classmethod
    def bit(cls, index: int) -> Size:
        return SINGLE_BIT_SIZES[index]


SIZE_PREFIXES: dict[Size, str] = {
    Size.BIT0: "M",
    Size.BIT1: "N",
    Size.BIT2: "O",
    Size.BIT3: "P",
    Size.BIT4: "Q",
    Size.BIT5: "R",
    Size.BIT6: "S",
    Size.BIT7: "T",
    Size.LOWER4: "L",
    Size.UPPER4: "U",
    Size.BITS8: "H",
    Size.BITS16: "",
    Size.BITS24: "W",
    Size.BITS32: "X",
    Size.BITS16_BE: "I",
    Size.BITS24_BE: "J",
    Size.BITS32_BE: "G",
    Size.BIT_COUNT: "K",
    Size.FLOAT: "fF",
    Size.FLOAT_BE: "fB",
    Size.DOUBLE32: "fH",
    Size.DOUBLE32_BE: "fI",
    Size.MBF32: "fM",
    Size.MBF32_LE: "fL",
}
PREFIX_SIZES: dict[str, Size] = {v: k for k, v in SIZE_PREFIXES.items() if v}

# Two-letter float codes must be tried before the single-letter ones.
PREFIX_ORDER: list[str] = sorted(PREFIX_SIZES, key=len, reverse=True)

SINGLE_BIT_SIZES: list[Size] = [
    Size.BIT0, Size.BIT1, Size.BIT2, Size.BIT3,
    Size.BIT4, Size.BIT5, Size.BIT6, Size.BIT7,
]
BIT_SIZES = frozenset(SINGLE_BIT_SIZES + [Size.BIT_COUNT])
NIBBLE_SIZES = frozenset({Size.LOWER4, Size.UPPER4})
WIDE_SIZES = frozenset(
    {
        Size.BITS24, Size.BITS24_BE, Size.BITS32, Size.BITS32_BE,
        Size.FLOAT, Size.FLOAT_BE, Size.DOUBLE32, Size.DOUBLE32_BE,
        Size.MBF32, Size.MBF32_LE,
    }
)

DEFAULT_SIZE = Size.BITS16

PREDICATE_CMPS = ("<=", ">=", "!=", "=", "<", ">")
OPERAND_CMPS = ("*", "/", "%", "+", "-", "&", "^")

RECALL_LITERAL = "{recall}"
LINE_SEPARATOR = "_"

_HITS_RE = re.compile(r"\.(\d+)\.$")
_FLAG_RE = re.compile(r"^([A-Z]:)")
_OPERAND_RE = re.compile(r"(\{recall\}|[dpb~]?0x[a-zA-Z]{0,2}[0-9A-Fa-f]+|-?\d+)")
_PREDICATE_CMP_RE = re.compile(r"^(<=|>=|!=|=|<|>)")
_OPERAND_CMP_RE = re.compile(r"^([*/%+\-&^])")


@dataclass
class Operand:
    """One side of a condition: kind, size and literal text."""
    kind: OperandKind
    size: Size | None
    literal: str

    @property
    def address(self) -> int:
        """Numeric value of a memory literal (0 when unreadable)."""
        try:
            return int(self.literal.replace("0x", ""), 16)
        except ValueError:
            return 0


def default_right_operand() -> Operand:
    return Operand(OperandKind.VALUE, Size.BITS8, "0")


@dataclass
class Condition:
    """A single predicate line plus its position and expansion state."""
    flag: Flag
    left: Operand
    cmp: str = "="
    right: Operand = field(default_factory=default_right_operand)
    hits: int = 0
    line_id: int = 0
    group_id: int = 0
    expanded: bool = False
    expanded_lines: list[str] = field(default_factory=list)


def default_condition() -> Condition:
    """The blank row added by the editor: ``0xH0=0``."""
    return Condition(
        flag=Flag.NONE,
        left=Operand(OperandKind.MEM, Size.BITS8, "0x0"),
    )


# ── Parsing ───────────────────────────────────────────────────────


def parse_memory_token(token: str) -> tuple[Size, str]:
    """Split ``0x<prefix><hex>`` into its size and normalized ``0x<HEX>`` literal."""
    body = token[2:]
    size = DEFAULT_SIZE
    for prefix in PREFIX_ORDER:
        if body.startswith(prefix):
            size = PREFIX_SIZES[prefix]
            body = body[len(prefix):]
            break
    return size, f"0x{body.upper()}"


def parse_operand(token: str) -> Operand:
    """Decode one operand token into an Operand."""
    token = token.strip()
    if token.startswith(RECALL_LITERAL):
        return Operand(OperandKind.RECALL, None, "")

    kind = OperandKind.MEM
    rest = token
    if rest[:1] in MODIFIER_KINDS:
        kind = MODIFIER_KINDS[rest[0]]
        rest = rest[1:]

    if rest.startswith("0x"):
        size, literal = parse_memory_token(rest)
        return Operand(kind, size, literal)

    return Operand(OperandKind.VALUE, Size.BITS8, token)


def parse_line(line: str) -> Condition | None:
    """Parse one condition line.

    Returns:
        The parsed Condition (line/group ids left at 0), or None when the
        line is blank or does not match the grammar.
    """
    working = line.strip()
    if not working:
        return None

    hits = 0
    hits_match = _HITS_RE.search(working)
    if hits_match:
        hits = int(hits_match.group(1))
        working = working[: -len(hits_match.group(0))]

    flag = Flag.NONE
    flag_match = _FLAG_RE.match(working)
    if flag_match:
        parsed_flag = Flag.from_token(flag_match.group(1))
        if parsed_flag is None:
            return None
        flag = parsed_flag
        working = working[len(flag_match.group(1)):]

    left_match = _OPERAND_RE.match(working)
    if not left_match:
        return None
    working = working[left_match.end():]

    cmp = ""
    right_token = ""
    remaining = working.strip()
    if remaining:
        cmp_re = _OPERAND_CMP_RE if flag.is_operand else _PREDICATE_CMP_RE
        cmp_match = cmp_re.match(remaining)
        if cmp_match:
            cmp = cmp_match.group(1)
            remaining = remaining[len(cmp):]
            right_token = remaining.strip()
        elif not flag.is_operand:
            right_token = remaining.strip()
        # An operand flag without an arithmetic operator keeps only its left side.

    if not flag.is_operand and not cmp:
        cmp = "="

    left = parse_operand(left_match.group(1))
    right = default_right_operand()
    if cmp and right_token:
        if not _OPERAND_RE.fullmatch(right_token):
            return None
        right = parse_operand(right_token)

    if flag is Flag.ADD_ADDRESS and left.kind not in ADD_ADDRESS_KINDS:
        left.kind = OperandKind.MEM

    return Condition(
        flag=flag,
        left=left,
        cmp=cmp,
        right=right,
        hits=0 if flag.is_operand else hits,
    )


def parse_logic(text: str) -> list[Condition]:
    """Parse a ``_``-joined logic blob, silently dropping malformed lines."""
    conditions: list[Condition] = []
    text = text.strip()
    if not text:
        return conditions
    for raw in text.split(LINE_SEPARATOR):
        condition = parse_line(raw)
        if condition is None:
            if raw.strip():
                logger.debug("Dropping unparseable line: %r", raw)
            continue
        conditions.append(condition)
    return conditions


# ── Serialization ─────────────────────────────────────────────────


def format_address(address: int, size: Size | None, pad: int = 0) -> str:
    """Render an address with its size prefix, e.g. ``0xH1234``."""
    prefix = size.prefix if size is not None else ""
    return f"0x{prefix}{address:0{pad}X}"


def serialize_operand(operand: Operand) -> str:
    if operand.kind is OperandKind.RECALL:
        return RECALL_LITERAL
    if operand.kind is OperandKind.VALUE:
        return operand.literal
    text = operand.kind.modifier
    if operand.literal.startswith("0x"):
        prefix = operand.size.prefix if operand.size is not None else ""
        return text + operand.literal.replace("0x", "0x" + prefix, 1)
    return text + operand.literal


def serialize_condition(condition: Condition) -> str:
    """Render a Condition back to its single-line text form."""
    text = condition.flag.value + serialize_operand(condition.left)
    if condition.cmp:
        text += condition.cmp + serialize_operand(condition.right)
    if condition.hits and not condition.flag.is_operand:
        text += f".{condition.hits}."
    return text


def serialize_logic(lines: list[str]) -> str:
    return LINE_SEPARATOR.join(lines)


def split_logic(text: str) -> list[str]:
    """Split a logic blob into its non-blank lines."""
    return [line for line in text.split(LINE_SEPARATOR) if line.strip()]


# ── Field normalization ───────────────────────────────────────────


def parse_number(text: str | None) -> int | None:
    """Read a signed hex (``0x``/``h`` prefix) or decimal number.

    Returns None when the text is blank or not a number.
    """
    if text is None:
        return None
    value = text.strip()
    if not value:
        return None
    sign = 1
    if value[0] in "+-":
        sign = -1 if value[0] == "-" else 1
        value = value[1:]
    try:
        if value[:2].lower() == "0x":
            return sign * int(value[2:], 16)
        if value[:1] in ("h", "H"):
            return sign * int(value[1:], 16)
        return sign * int(value, 10)
    except ValueError:
        return None


def normalize_hex_input(value: str, is_memory_kind: bool) -> str:
    """Normalize a user-typed address or value field.

    Memory kinds normalize to ``0x<HEX>``; value kinds normalize to decimal.
    """
    value = value.strip()
    if not value:
        return "0x0" if is_memory_kind else "0"

    if is_memory_kind:
        if re.fullmatch(r"0x[0-9A-Fa-f]+", value):
            return "0x" + value[2:].upper()
        if re.fullmatch(r"[hHxX][0-9A-Fa-f]+", value):
            return "0x" + value[1:].upper()
        if re.fullmatch(r"[0-9A-Fa-f]+", value):
            return "0x" + value.upper()
        return "0x0"

    if re.fullmatch(r"-?\d+", value):
        return value
    if re.fullmatch(r"0[xX][0-9A-Fa-f]+", value):
        return str(int(value[2:], 16))
    if re.fullmatch(r"[hH][0-9A-Fa-f]+", value):
        return str(int(value[1:], 16))
    if re.fullmatch(r"[0-9A-Fa-f]+", value):
        return str(int(value, 16))
    return "0"


def validate_type_change(flag: Flag, kind: OperandKind) -> bool:
    """Whether ``kind`` is allowed on the left side of a ``flag`` line."""
    if flag is Flag.ADD_ADDRESS:
        return kind in ADD_ADDRESS_KINDS
    return True
