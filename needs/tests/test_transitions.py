"""Tests for the legal status transition graph."""

import pytest

from needs.common.errors import IllegalTransitionError
from needs.common.schemas import NeedStatus
from needs.engine.transitions import allowed_targets, is_legal, require_legal, severity_rank

W, R, O, Y, G = NeedStatus.WHITE, NeedStatus.RED, NeedStatus.ORANGE, NeedStatus.YELLOW, NeedStatus.GREEN

EXPECTED = {
    W: {R, Y, O},
    R: {Y, O},
    Y: {O, G, R, W},
    O: {G, R, Y},
    G: {Y, O, R},
}


class TestIsLegal:
    @pytest.mark.parametrize("from_status", list(NeedStatus))
    @pytest.mark.parametrize("to_status", list(NeedStatus))
    def test_full_table(self, from_status, to_status):
        expected = from_status == to_status or to_status in EXPECTED[from_status]
        assert is_legal(from_status, to_status) is expected

    def test_red_cannot_jump_to_green(self):
        assert not is_legal(R, G)

    def test_white_cannot_jump_to_green(self):
        assert not is_legal(W, G)


class TestRequireLegal:
    def test_legal_passes(self):
        require_legal(W, R)

    def test_illegal_raises_with_context(self):
        with pytest.raises(IllegalTransitionError) as exc_info:
            require_legal(R, G, sector_id="s1", capability_id="water")
        err = exc_info.value
        assert err.from_status == R
        assert err.to_status == G
        assert err.sector_id == "s1"
        assert "RED -> GREEN" in err.message


class TestOrdering:
    def test_severity_order(self):
        ranked = sorted(NeedStatus, key=severity_rank, reverse=True)
        assert ranked == [R, O, Y, G, W]

    def test_allowed_targets_include_self_most_severe_first(self):
        assert allowed_targets(R) == [R, O, Y]
        assert allowed_targets(W) == [R, O, Y, W]
