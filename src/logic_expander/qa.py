"""Generated-logic validation and lint suite."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .grammar import (
    ADD_ADDRESS_KINDS,
    RECALL_LITERAL,
    Flag,
    parse_line,
    parse_operand,
    split_logic,
)

DEFAULT_LINE_BUDGET = 1000

_HITS_SUFFIX_RE = re.compile(r"\.(\d+)\.$")
_ADD_ADDRESS_LEFT_RE = re.compile(r"^I:(\{recall\}|[dpb~]?0x[a-zA-Z]{0,2}[0-9A-Fa-f]+|-?\d+)")


@dataclass
class ValidationIssue:
    """A single validation issue found in generated logic."""
    check: str
    severity: str  # "error" | "warning"
    line: int  # 1-based, 0 for whole-blob issues
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationReport:
    """Complete validation report for one logic blob."""
    total_lines: int
    issues: list[ValidationIssue]
    checks_run: list[str]
    passed: bool

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "error")

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "warning")


def check_unparseable_lines(lines: list[str]) -> list[ValidationIssue]:
    """Every line must match the condition grammar."""
    issues: list[ValidationIssue] = []
    for number, line in enumerate(lines, start=1):
        if parse_line(line) is None:
            issues.append(
                ValidationIssue(
                    check="unparseable_lines",
                    severity="error",
                    line=number,
                    message=f"Line does not match the condition grammar: '{line}'",
                    details={"text": line},
                )
            )
    return issues


def check_dangling_chain(lines: list[str]) -> list[ValidationIssue]:
    """The final line must not chain into a line that does not exist."""
    for number in range(len(lines), 0, -1):
        condition = parse_line(lines[number - 1])
        if condition is None:
            continue
        if condition.flag.is_chaining:
            return [
                ValidationIssue(
                    check="dangling_chain",
                    severity="error",
                    line=number,
                    message=f"Last line carries chaining flag {condition.flag.label}",
                    details={"flag": condition.flag.value},
                )
            ]
        break
    return []


def check_operand_hits(lines: list[str]) -> list[ValidationIssue]:
    """Hit counts on Add/Sub Source, Add Address or Remember lines are ignored."""
    issues: list[ValidationIssue] = []
    for number, line in enumerate(lines, start=1):
        condition = parse_line(line)
        if condition is None or not condition.flag.is_operand:
            continue
        match = _HITS_SUFFIX_RE.search(line.strip())
        if match:
            issues.append(
                ValidationIssue(
                    check="operand_hits",
                    severity="warning",
                    line=number,
                    message=f"Hit count {match.group(1)} has no effect on {condition.flag.label}",
                    details={"hits": int(match.group(1))},
                )
            )
    return issues


def check_add_address_types(lines: list[str]) -> list[ValidationIssue]:
    """Add Address may only dereference Mem, Prior, Value or Recall."""
    issues: list[ValidationIssue] = []
    for number, line in enumerate(lines, start=1):
        match = _ADD_ADDRESS_LEFT_RE.match(line.strip())
        if not match:
            continue
        kind = parse_operand(match.group(1)).kind
        if kind not in ADD_ADDRESS_KINDS:
            issues.append(
                ValidationIssue(
                    check="add_address_types",
                    severity="error",
                    line=number,
                    message=f"Add Address cannot use a {kind.value} operand",
                    details={"kind": kind.value},
                )
            )
    return issues


def check_recall_without_remember(lines: list[str]) -> list[ValidationIssue]:
    """A recall must come after at least one Remember line."""
    issues: list[ValidationIssue] = []
    remembered = False
    for number, line in enumerate(lines, start=1):
        if RECALL_LITERAL in line and not remembered:
            issues.append(
                ValidationIssue(
                    check="recall_without_remember",
                    severity="error",
                    line=number,
                    message="Recall used before any Remember line",
                )
            )
        if line.strip().startswith(Flag.REMEMBER.value):
            remembered = True
    return issues


def check_line_budget(lines: list[str], max_lines: int = DEFAULT_LINE_BUDGET) -> list[ValidationIssue]:
    """Flag logic that has grown past a comfortable line count."""
    if len(lines) <= max_lines:
        return []
    return [
        ValidationIssue(
            check="line_budget",
            severity="warning",
            line=0,
            message=f"{len(lines)} lines exceeds the budget of {max_lines}",
            details={"lines": len(lines), "max_lines": max_lines},
        )
    ]


def run_validation_suite(logic: str, max_lines: int = DEFAULT_LINE_BUDGET) -> ValidationReport:
    """Run all validation checks and produce a comprehensive report."""
    lines = split_logic(logic)
    all_issues: list[ValidationIssue] = []
    checks_run: list[str] = []

    # 1. Grammar
    checks_run.append("unparseable_lines")
    all_issues.extend(check_unparseable_lines(lines))

    # 2. Trailing chain
    checks_run.append("dangling_chain")
    all_issues.extend(check_dangling_chain(lines))

    # 3. Hits on operand flags
    checks_run.append("operand_hits")
    all_issues.extend(check_operand_hits(lines))

    # 4. Add Address operand kinds
    checks_run.append("add_address_types")
    all_issues.extend(check_add_address_types(lines))

    # 5. Recall ordering
    checks_run.append("recall_without_remember")
    all_issues.extend(check_recall_without_remember(lines))

    # 6. Size
    checks_run.append("line_budget")
    all_issues.extend(check_line_budget(lines, max_lines))

    error_count = sum(1 for i in all_issues if i.severity == "error")

    return ValidationReport(
        total_lines=len(lines),
        issues=all_issues,
        checks_run=checks_run,
        passed=error_count == 0,
    )
