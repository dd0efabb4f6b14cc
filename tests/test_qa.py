"""Tests for the generated-logic validation suite."""

from __future__ import annotations

from logic_expander.qa import (
    ValidationReport,
    check_add_address_types,
    check_dangling_chain,
    check_line_budget,
    check_operand_hits,
    check_recall_without_remember,
    check_unparseable_lines,
    run_validation_suite,
)


# ── Grammar Check Tests ───────────────────────────────────────────


class TestCheckUnparseableLines:
    """Test grammar validation of each line."""

    def test_clean_lines(self):
        assert check_unparseable_lines(["0xH1=1", "A:0xH2", "R:d0xX3!=4.2."]) == []

    def test_garbage_flagged(self):
        issues = check_unparseable_lines(["0xH1=1", "hello"])
        assert len(issues) == 1
        assert issues[0].line == 2
        assert issues[0].severity == "error"
        assert issues[0].details["text"] == "hello"

    def test_unknown_flag_flagged(self):
        assert len(check_unparseable_lines(["X:0xH1=1"])) == 1


# ── Chain Check Tests ─────────────────────────────────────────────


class TestCheckDanglingChain:
    """Test detection of a trailing chaining flag."""

    def test_terminated_chain(self):
        assert check_dangling_chain(["A:0xH1", "0xH2=1"]) == []

    def test_trailing_add_source(self):
        issues = check_dangling_chain(["0xH2=1", "A:0xH1"])
        assert len(issues) == 1
        assert issues[0].line == 2
        assert issues[0].details["flag"] == "A:"

    def test_trailing_garbage_is_skipped(self):
        issues = check_dangling_chain(["N:0xH1=1", "junk"])
        assert issues[0].line == 1

    def test_empty(self):
        assert check_dangling_chain([]) == []


# ── Operand Flag Check Tests ──────────────────────────────────────


class TestCheckOperandHits:
    """Test hit counts written on operand-flag lines."""

    def test_hits_on_comparison_allowed(self):
        assert check_operand_hits(["0xH1=1.5."]) == []

    def test_hits_on_add_source_warned(self):
        issues = check_operand_hits(["A:0xH1.5."])
        assert len(issues) == 1
        assert issues[0].severity == "warning"
        assert issues[0].details["hits"] == 5


class TestCheckAddAddressTypes:
    """Test the Add Address operand kind restriction."""

    def test_allowed_kinds(self):
        lines = ["I:0xX10", "I:p0xX10", "I:5", "I:{recall}"]
        assert check_add_address_types(lines) == []

    def test_delta_rejected(self):
        issues = check_add_address_types(["I:d0xX10", "0xH1=1"])
        assert len(issues) == 1
        assert issues[0].line == 1
        assert issues[0].details["kind"] == "Delta"

    def test_other_flags_ignored(self):
        assert check_add_address_types(["A:d0xX10"]) == []


# ── Recall Check Tests ────────────────────────────────────────────


class TestCheckRecallWithoutRemember:
    """Test recall ordering."""

    def test_recall_after_remember(self):
        assert check_recall_without_remember(["K:0xH1", "A:{recall}"]) == []

    def test_recall_before_remember(self):
        issues = check_recall_without_remember(["A:{recall}", "K:0xH1"])
        assert len(issues) == 1
        assert issues[0].line == 1


class TestCheckLineBudget:
    """Test the line-count warning."""

    def test_within_budget(self):
        assert check_line_budget(["0xH1=1"] * 3, max_lines=3) == []

    def test_over_budget(self):
        issues = check_line_budget(["0xH1=1"] * 4, max_lines=3)
        assert issues[0].line == 0
        assert issues[0].details == {"lines": 4, "max_lines": 3}


# ── Suite Tests ───────────────────────────────────────────────────


class TestRunValidationSuite:
    """Test the full report."""

    def test_clean_logic_passes(self):
        report = run_validation_suite("A:0xH10_K:0xH20_B:{recall}_0xH1=1")
        assert isinstance(report, ValidationReport)
        assert report.passed is True
        assert report.total_lines == 4
        assert report.issues == []
        assert len(report.checks_run) == 6

    def test_warnings_do_not_fail(self):
        report = run_validation_suite("0xH1=1", max_lines=0)
        assert report.passed is True
        assert report.warning_count == 1
        assert report.error_count == 0

    def test_errors_fail(self):
        report = run_validation_suite("junk_A:0xH1")
        assert report.passed is False
        assert report.error_count == 2
        assert {i.check for i in report.issues} == {"unparseable_lines", "dangling_chain"}
