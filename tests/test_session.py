"""Tests for the logic editing session."""

from __future__ import annotations

import logging

from logic_expander.custom_selection import LINE_COUNT_EXCEEDED, toggle_bit
from logic_expander.grammar import OperandKind
from logic_expander.session import LogicSession


def _group_ids(session: LogicSession) -> list[int]:
    return [c.group_id for c in session.conditions]


def _texts(session: LogicSession) -> list[str]:
    return [row.text for row in session.project_rows()]


# ── Loading Tests ─────────────────────────────────────────────────


class TestLoad:
    """Test parsing a blob into the session."""

    def test_chaining_flags_auto_link(self, session, chained_logic):
        assert session.load(chained_logic) == 3
        assert [c.line_id for c in session.conditions] == [1, 2, 3]
        assert _group_ids(session) == [2, 2, 3]
        assert session.group_colors == {2: 0}

    def test_reload_replaces_state(self, session, chained_logic):
        session.load(chained_logic)
        session.open_expansion(2)
        session.load("0xH1=1")
        assert len(session.conditions) == 1
        assert session.expansions == {}
        assert session.group_colors == {}

    def test_malformed_lines_dropped(self, session):
        assert session.load("0xH1=1_garbage_0xH2=2") == 2

    def test_load_logs_summary(self, session, chained_logic, caplog):
        with caplog.at_level(logging.INFO):
            session.load(chained_logic)
        assert "Loaded 3 condition(s) in 2 group(s)" in caplog.text

    def test_clear(self, session, chained_logic):
        session.load(chained_logic)
        session.clear()
        assert session.conditions == []
        assert session.group_colors == {}


# ── Row Operation Tests ───────────────────────────────────────────


class TestRowOperations:
    """Test adding, inserting, copying and removing rows."""

    def test_add_condition_appends_blank_row(self, session):
        session.load("0xH1=1")
        session.add_condition()
        assert _texts(session) == ["0xH1=1", "0xH0=0"]
        assert _group_ids(session) == [1, 2]

    def test_insert_after_index(self, session):
        session.load("0xH1=1_0xH2=1")
        session.insert_condition(0)
        assert _texts(session) == ["0xH1=1", "0xH0=0", "0xH2=1"]
        assert _group_ids(session) == [1, 2, 3]

    def test_insert_does_not_join_a_group(self, session, chained_logic):
        session.load(chained_logic)
        session.insert_condition(2)
        assert _group_ids(session) == [2, 2, 3, 4]

    def test_copy_group_below_original(self, session, chained_logic):
        session.load(chained_logic)
        copies = session.copy_group(1)
        assert len(copies) == 2
        assert _texts(session) == ["A:0xH1", "0xH2=1", "A:0xH1", "0xH2=1", "0xH3=1"]
        assert _group_ids(session) == [2, 2, 4, 4, 5]
        assert session.group_colors == {2: 0, 4: 1}

    def test_copy_drops_expansion(self, session):
        session.load("0xH1000=5")
        session.open_expansion(1)
        session.update_expansion_field(1, "generated_groups", 2)
        session.confirm_expansion(1)
        session.copy_group(1)
        assert session.conditions[0].expanded is True
        assert session.conditions[1].expanded is False
        assert session.conditions[1].expanded_lines == []

    def test_copy_unknown_line(self, session):
        session.load("0xH1=1")
        assert session.copy_group(9) == []

    def test_remove_whole_group(self, session, chained_logic):
        session.load(chained_logic)
        assert session.remove_group(1) == 2
        assert _texts(session) == ["0xH3=1"]
        assert session.conditions[0].line_id == 1
        assert session.group_colors == {}

    def test_structural_change_closes_expansion(self, session):
        session.load("0xH1=1_0xH2=1")
        session.open_expansion(2)
        session.add_condition()
        assert session.expansions == {}


# ── Field Edit Tests ──────────────────────────────────────────────


class TestUpdateCondition:
    """Test editing individual condition fields."""

    def test_address_normalized(self, session):
        session.load("0xH1=1")
        assert session.update_condition(1, "left_literal", "h20") is True
        assert _texts(session) == ["0xH20=1"]

    def test_value_normalized(self, session):
        session.load("0xH1=1")
        session.update_condition(1, "right_literal", "0x10")
        assert _texts(session) == ["0xH1=16"]

    def test_hits(self, session):
        session.load("0xH1=1")
        session.update_condition(1, "hits", "0x3")
        assert _texts(session) == ["0xH1=1.3."]

    def test_operand_flag_clears_comparison_and_hits(self, session):
        session.load("0xH10=5.3.")
        assert session.update_condition(1, "flag", "A:") is True
        assert _texts(session) == ["A:0xH10"]

    def test_predicate_flag_restores_comparison(self, session):
        session.load("A:0xH10")
        session.update_condition(1, "flag", "R:")
        assert session.conditions[0].cmp == "="

    def test_chaining_flag_links_below(self, session):
        session.load("0xH1=1_0xH2=1")
        session.update_condition(1, "flag", "N:")
        assert _group_ids(session) == [2, 2]
        assert session.group_colors == {2: 0}

    def test_add_address_rejects_delta_kind(self, session):
        session.load("I:0xH10")
        assert session.update_condition(1, "left_kind", "Delta") is False
        assert session.conditions[0].left.kind is OperandKind.MEM
        assert session.warning == "Delta is not allowed with Add Address."
        assert session.flash_line_id == 1

    def test_add_address_flag_rejected_for_delta_line(self, session):
        session.load("d0xH10=1")
        assert session.update_condition(1, "flag", "I:") is False
        assert _texts(session) == ["d0xH10=1"]
        assert session.flash_line_id == 1

    def test_recall_kind_clears_literal(self, session):
        session.load("0xH1=1")
        session.update_condition(1, "right_kind", "Recall")
        assert _texts(session) == ["0xH1={recall}"]

    def test_unknown_flag_warns_instead_of_raising(self, session):
        session.load("0xH1=1")
        assert session.update_condition(1, "flag", "X:") is False
        assert session.warning == "'X:' is not a valid Flag."
        assert session.flash_line_id == 1
        assert _texts(session) == ["0xH1=1"]

    def test_unknown_kind_and_size_rejected(self, session):
        session.load("0xH1=1")
        assert session.update_condition(1, "left_kind", "Pointer") is False
        assert session.update_condition(1, "right_size", "Huge") is False
        assert _texts(session) == ["0xH1=1"]

    def test_comparison_must_suit_the_flag(self, session):
        session.load("A:0xH10_0xH1=1")
        assert session.update_condition(1, "cmp", "=") is False
        assert "not valid for this flag" in session.warning
        assert session.update_condition(1, "cmp", "*") is True
        assert session.update_condition(2, "cmp", "*") is False
        assert session.update_condition(2, "cmp", ">=") is True
        assert _texts(session) == ["A:0xH10*0", "0xH1>=1"]

    def test_unknown_field(self, session):
        session.load("0xH1=1")
        assert session.update_condition(1, "colour", "red") is False

    def test_unknown_line(self, session):
        session.load("0xH1=1")
        assert session.update_condition(7, "hits", "1") is False


# ── Linking Tests ─────────────────────────────────────────────────


class TestLinking:
    """Test manual link and unlink."""

    def test_link_and_unlink(self, session):
        session.load("0xH1=1_0xH2=1")
        assert session.can_link(1) is True
        assert session.link(1) is True
        assert _group_ids(session) == [2, 2]
        assert session.group_colors == {2: 0}
        assert session.unlink(1) is True
        assert _group_ids(session) == [1, 2]
        assert session.group_colors == {}

    def test_link_drops_open_expansion(self, session):
        session.load("0xH1=1_0xH2=1")
        session.open_expansion(2)
        session.link(1)
        assert session.expansion(2) is None

    def test_cannot_link_last_row(self, session):
        session.load("0xH1=1")
        assert session.link(1) is False


# ── Expansion Tests ───────────────────────────────────────────────


class TestExpansion:
    """Test the open/configure/confirm flow."""

    def test_arithmetic_expansion(self, session):
        session.load("0xH1000=5_0xH2000=1")
        assert session.open_expansion(1) is not None
        session.update_expansion_field(1, "generated_groups", "3")
        session.update_line_config(1, 0, "arithmetic_increment", "0x10")
        assert session.preview_expansion(1) == ["0xH1000=5", "0xH1010=5", "0xH1020=5"]
        assert session.confirm_expansion(1) is True
        result = session.generate_logic(compress_bits=False, optimize_rr=False)
        assert result.logic == "0xH1000=5_0xH1010=5_0xH1020=5_0xH2000=1"
        assert session.expansions == {}

    def test_only_leaders_open(self, session, chained_logic):
        session.load(chained_logic)
        assert session.open_expansion(1) is None
        config = session.open_expansion(2)
        assert len(config.line_configs) == 2

    def test_one_expansion_open_at_a_time(self, session):
        session.load("0xH1=1_0xH2=1")
        session.open_expansion(1)
        session.open_expansion(2)
        assert list(session.expansions) == [2]

    def test_default_delta_check_from_session(self):
        session = LogicSession(delta_check_default=False)
        session.load("A:0xH1_0xH2=1")
        assert session.open_expansion(2).delta_check is False

    def test_expanded_group_must_be_reopened(self, session):
        session.load("0xH1=1")
        session.open_expansion(1)
        session.confirm_expansion(1)
        assert session.open_expansion(1) is None
        assert session.reopen_expansion(1) is True
        assert session.conditions[0].expanded_lines == []
        assert session.open_expansion(1) is not None

    def test_reopen_without_expansion(self, session):
        session.load("0xH1=1")
        assert session.reopen_expansion(1) is False

    def test_unavailable_tab_warns(self, session):
        session.load("0xH1=1")
        session.open_expansion(1)
        assert session.update_line_config(1, 0, "active_tab", "both") is False
        assert session.warning == "Tab 'both' is not available for this line."

    def test_cancel_expansion(self, session):
        session.load("0xH1=1")
        session.open_expansion(1)
        session.cancel_expansion(1)
        assert session.expansion(1) is None
        assert session.confirm_expansion(1) is False

    def test_custom_selection_flow(self, session):
        session.load("0xM1234=1")
        session.open_expansion(1)
        session.update_expansion_field(1, "generated_groups", 2)
        assert session.open_line_customization(1, 0) is True
        data = session.expansion(1).line_configs[0].custom_data
        toggle_bit(data, 0x1230, 4, 0)
        toggle_bit(data, 0x1230, 4, 1)
        assert session.confirm_line_customization(1, 0) is True
        assert session.confirm_expansion(1) is True
        assert session.generate_lines() == ["0xM1234=1", "0xN1234=1"]

    def test_confirm_blocked_by_stale_customization(self, session):
        session.load("0xM1234=1")
        session.open_expansion(1)
        session.update_expansion_field(1, "generated_groups", 2)
        session.open_line_customization(1, 0)
        data = session.expansion(1).line_configs[0].custom_data
        toggle_bit(data, 0x1230, 4, 0)
        toggle_bit(data, 0x1230, 4, 1)
        session.confirm_line_customization(1, 0)
        session.update_expansion_field(1, "generated_groups", 3)
        assert session.confirm_expansion(1) is False
        assert session.warning == "Custom selection count (2) must match Generated Groups (3)"
        assert session.expansion(1) is not None

    def test_over_limit_toggle_warns_on_session(self, session):
        session.load("0xM1234=1")
        session.open_expansion(1)
        session.open_line_customization(1, 0)
        assert session.toggle_selection(1, 0, "bit", 0x1230, 4, 0) is True
        assert session.toggle_selection(1, 0, "bit", 0x1230, 4, 1) is False
        assert session.warning == LINE_COUNT_EXCEEDED
        assert session.expansion(1).warning == LINE_COUNT_EXCEEDED
        assert session.expansion(1).line_configs[0].custom_data.selected_count == 1

    def test_unknown_toggle(self, session):
        session.load("0xM1234=1")
        session.open_expansion(1)
        session.open_line_customization(1, 0)
        assert session.toggle_selection(1, 0, "sideways", 0x1230, 4) is False

    def test_bad_line_index(self, session):
        session.load("0xH1=1")
        session.open_expansion(1)
        assert session.open_line_customization(1, 4) is False


# ── Generation Tests ──────────────────────────────────────────────


class TestGenerateLogic:
    """Test concatenation and the optional compression passes."""

    def test_plain_serialization(self, session, chained_logic):
        session.load(chained_logic)
        result = session.generate_logic()
        assert result.logic == chained_logic
        assert result.rr.savings == 0

    def test_bit_compression(self, session, eight_bit_lines):
        session.load("_".join(eight_bit_lines) + "_0xH1=1")
        result = session.generate_logic(optimize_rr=False)
        assert result.logic == "A:0xK1234_0xH1=1"
        assert result.bits_saved == 7
        assert result.uncompressed_lines == 9

    def test_bit_compression_disabled(self, session, eight_bit_lines):
        session.load("_".join(eight_bit_lines) + "_0xH1=1")
        result = session.generate_logic(compress_bits=False, optimize_rr=False)
        assert result.lines == eight_bit_lines + ["0xH1=1"]
        assert result.bits_saved == 0

    def test_remember_recall_adopted_when_shorter(self, session):
        session.load("_".join(["A:0xH10", "B:0xH20"] * 3) + "_0xH1=1")
        result = session.generate_logic()
        assert result.logic == "A:0xH10_K:0xH20_B:{recall}_B:{recall}_0xH1=1"
        assert result.lines[-1] == "0xH1=1"
        assert result.rr.savings == 10


# ── Projection Tests ──────────────────────────────────────────────


class TestProjectRows:
    """Test the state-to-view projection."""

    def test_rows_for_linked_group(self, session, chained_logic):
        session.load(chained_logic)
        first, leader, single = session.project_rows()

        assert first.is_leader is False
        assert first.group_size == 2
        assert first.can_unlink is True
        assert first.can_expand is False
        assert first.color == 0

        assert leader.is_leader is True
        assert leader.can_link is True
        assert leader.can_unlink is False
        assert leader.can_expand is True

        assert single.color is None
        assert single.can_link is False

    def test_open_expansion_flagged(self, session):
        session.load("0xH1=1")
        session.open_expansion(1)
        assert session.project_rows()[0].expansion_open is True
