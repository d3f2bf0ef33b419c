"""
Tests the temporal reuse analysis in ISL.
"""

import unittest

import islpy as isl

from looptree.model._looptree.reuse.isl.mapping_to_isl.types import (
    Occupancy,
    SpatialTag,
    TemporalTag,
)
from looptree.model._looptree.reuse.isl.temporal import (
    TemporalReuse,
    analyze_temporal_reuse,
    construct_time_shift,
)


def _read_map(string: str) -> isl.Map:
    return isl.Map.read_from_str(isl.DEFAULT_CONTEXT, string).coalesce()


class TestTemporalReuseAnalysis(unittest.TestCase):
    """
    Tests the temporal reuse analysis in ISL.
    """

    def setUp(self):
        # A sliding window of three elements over t0, broadcast across x.
        self.occ: Occupancy = Occupancy(
            [TemporalTag(), SpatialTag(0, None), TemporalTag()],
            _read_map(
                "{ generic_iteration[t1, x, t0] -> tensor[d] : "
                "t0 <= d < t0+3 and 0 <= t1 < 2 and 0 <= x < 2 and 0 <= t0 < 2 }"
            ),
        )

    def test_multiple_loop_reuse(self):
        """
        Data resident at the end of one step of t1 is reused at the start of
        the next one.
        """
        result: TemporalReuse = analyze_temporal_reuse(self.occ, True, True)
        soln: isl.Map = _read_map(
            "{ generic_iteration[t1, x, t0] -> tensor[d] : "
            "0 <= x < 2 and "
            "(((t1 = 0) and (t0 = 0) and (0 <= d < 3)) or "
            " ((t1 = 0) and (t0 = 1) and (d = 3)) or "
            " ((t1 = 1) and (t0 = 0) and (d = 0)) or "
            " ((t1 = 1) and (t0 = 1) and (d = 3))"
            ")}"
        )
        fill: isl.Map = result.fill.map_
        self.assertTrue(soln.is_equal(fill), f"Expected:\n{soln}\nReceived:\n{fill}")
        self.assertTrue(result.effective_occupancy.map_.is_equal(self.occ.map_))
        self.assertEqual(self.occ.tags, result.fill.tags)

    def test_single_loop_reuse(self):
        """Only the previous step of the innermost loop is reused."""
        result = analyze_temporal_reuse(self.occ, True, False)
        soln = _read_map(
            "{ generic_iteration[t1, x, t0] -> tensor[d] : "
            "0 <= t1 < 2 and 0 <= x < 2 and "
            "((t0 = 0 and 0 <= d < 3) or (t0 = 1 and d = 3)) }"
        )
        self.assertTrue(soln.is_equal(result.fill.map_), f"{result.fill.map_}")

    def test_no_reuse(self):
        result = analyze_temporal_reuse(self.occ, exploit_reuse=False)
        self.assertTrue(result.fill.map_.is_equal(self.occ.map_))
        self.assertTrue(result.effective_occupancy.map_.is_equal(self.occ.map_))

    def test_stationary_dims_are_dropped(self):
        """Temporal dims the occupancy does not change across are removed."""
        occ = Occupancy(
            [TemporalTag(), SpatialTag(0, "PE")],
            _read_map("{ PE_spacetime[t, x] -> W[x] : 0 <= t < 4 and 0 <= x < 2 }"),
        )
        result = analyze_temporal_reuse(occ)

        soln = _read_map("{ PE_spacetime[x] -> W[x] : 0 <= x < 2 }")
        self.assertEqual((SpatialTag(0, "PE"),), result.fill.tags)
        self.assertEqual(result.fill.tags, result.effective_occupancy.tags)
        self.assertTrue(result.fill.map_.is_equal(soln), f"{result.fill.map_}")
        self.assertTrue(result.effective_occupancy.map_.is_equal(soln))

    def test_time_shift_crosses_loops(self):
        """The step before the first step of t0 is the last step of t0 under t1 - 1."""
        time_shift = construct_time_shift(self.occ.map_, list(self.occ.tags))
        soln = _read_map(
            "{ generic_iteration[t1, x, t0] -> generic_iteration[t1', x, t0'] : "
            "0 <= x < 2 and 0 <= t1 < 2 and 0 <= t0 < 2 and "
            "((t1' = t1 and t0' = t0 - 1) or (t1' = t1 - 1 and t0 = 0 and t0' = 1)) }"
        )
        self.assertTrue(time_shift.is_equal(soln), f"{time_shift}")
