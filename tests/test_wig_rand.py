import pytest
import os
import sys
import tracemalloc
import numpy as np

# Add parent directory to path to import wig_rand_lib
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import wig_rand_lib
from wig_rand_lib import (
    NoEligiblePositionsError,
    eligibility_mask,
    eligible_positions,
    position_shuffle,
    unit_scatter,
    validate_wig,
)

WIG = [10, 5, 0, 0, 0, 0]


def first_two(i):
    return i <= 1


def never(i):
    return False


# ==========================================
# Helpers
# ==========================================

def test_validate_wig_copies_input():
    src = np.array(WIG)
    out = validate_wig(src)
    out[0] = 99
    assert src[0] == 10
    assert out.dtype == np.int64


@pytest.mark.parametrize("bad, match", [
    ([1, -1, 0], "non-negative"),
    ([1.5, 2.0], "integer"),
    ([[1, 2], [3, 4]], "one-dimensional"),
])
def test_validate_wig_rejects_bad_input(bad, match):
    with pytest.raises(ValueError, match=match):
        validate_wig(bad)


def test_validate_wig_empty():
    assert len(validate_wig([])) == 0


def test_eligibility_mask_defaults_to_all():
    assert eligibility_mask(4).all()
    assert list(eligible_positions(6, lambda i: i % 3 == 0)) == [0, 3]


# ==========================================
# Unit scatter
# ==========================================

@pytest.mark.parametrize("seed", range(5))
def test_unit_scatter_conserves_mass(seed):
    out = unit_scatter(WIG, rng=seed)
    assert out.sum() == 15
    assert len(out) == len(WIG)
    assert (out >= 0).all()


def test_unit_scatter_restricted():
    out = unit_scatter(WIG, first_two, rng=1)
    assert out.sum() == 15
    assert list(out[2:]) == [0, 0, 0, 0]


def test_unit_scatter_keeps_ineligible_values():
    wig = [3, 7, 2, 9, 0, 4]
    out = unit_scatter(wig, lambda i: i % 2 == 0, rng=3)
    assert out[1] == 7 and out[3] == 9 and out[5] == 4
    assert out[0] + out[2] + out[4] == 5


def test_unit_scatter_all_ineligible_is_noop():
    assert list(unit_scatter(WIG, never, rng=0)) == WIG


def test_unit_scatter_moves_mass_only_between_eligible_positions():
    wig = [4, 0, 6, 0, 2]
    out = unit_scatter(wig, lambda i: i in (1, 2), rng=0)
    assert out[1] + out[2] == 6
    assert [out[0], out[3], out[4]] == [4, 0, 2]


def test_unit_scatter_single_eligible_position_receives_everything():
    out = unit_scatter([0, 0, 0, 8], lambda i: i == 3, rng=0)
    assert list(out) == [0, 0, 0, 8]


def test_unit_scatter_does_not_mutate_input():
    wig = list(WIG)
    unit_scatter(wig, rng=0)
    assert wig == WIG


def test_unit_scatter_is_reproducible_with_seed():
    a = unit_scatter(WIG, rng=np.random.default_rng(7))
    b = unit_scatter(WIG, rng=np.random.default_rng(7))
    assert np.array_equal(a, b)


def test_unit_scatter_is_roughly_uniform():
    out = unit_scatter([6000, 0, 0], rng=11)
    assert out.sum() == 6000
    for v in out:
        assert abs(v - 2000) < 200


def test_unit_scatter_large_mass_uses_bounded_memory():
    tracemalloc.start()
    try:
        out = unit_scatter([10**7, 0, 0, 0], rng=0)
        _, peak = tracemalloc.get_traced_memory()
    finally:
        tracemalloc.stop()
    assert out.sum() == 10**7
    assert peak < 1e6


def test_unit_scatter_draws_across_chunks(monkeypatch):
    monkeypatch.setattr(wig_rand_lib, "UNIT_DRAW_CHUNK", 7)
    out = unit_scatter([30, 0, 2, 0], lambda i: i != 2, rng=5)
    assert out.sum() == 32
    assert out[2] == 2
    assert out[0] + out[1] + out[3] == 30


def test_unit_scatter_empty_wig():
    assert len(unit_scatter([], rng=0)) == 0


def test_no_eligible_positions_error_is_value_error():
    assert issubclass(NoEligiblePositionsError, ValueError)


# ==========================================
# Position shuffle
# ==========================================

@pytest.mark.parametrize("seed", range(5))
def test_position_shuffle_is_permutation(seed):
    wig = [10, 5, 0, 3, 0, 1, 7]
    out = position_shuffle(wig, rng=seed)
    assert sorted(out) == sorted(wig)


def test_position_shuffle_restricted():
    out = position_shuffle(WIG, first_two, rng=0)
    assert sorted(out[:2]) == [5, 10]
    assert list(out[2:]) == [0, 0, 0, 0]


def test_position_shuffle_keeps_ineligible_values():
    wig = [1, 2, 3, 4, 5, 6, 7, 8]
    eligible = lambda i: i % 2 == 1
    for seed in range(10):
        out = position_shuffle(wig, eligible, rng=seed)
        assert list(out[::2]) == [1, 3, 5, 7]
        assert sorted(out[1::2]) == [2, 4, 6, 8]


def test_position_shuffle_single_eligible_is_noop():
    out = position_shuffle(WIG, lambda i: i == 1, rng=0)
    assert list(out) == WIG


def test_position_shuffle_all_ineligible_is_noop():
    assert list(position_shuffle(WIG, never, rng=0)) == WIG


def test_position_shuffle_reaches_every_arrangement():
    wig = [1, 2, 3]
    rng = np.random.default_rng(5)
    seen = {tuple(position_shuffle(wig, rng=rng)) for _ in range(300)}
    assert len(seen) == 6


def test_position_shuffle_does_not_mutate_input():
    wig = np.array(WIG)
    position_shuffle(wig, rng=0)
    assert list(wig) == WIG
