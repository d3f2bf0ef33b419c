"""
Some non-exhaustive tests to make sure core functionality of the non-fusing and
fusing portions of ISL tiling is not violated under changes.
"""

import unittest

import islpy as isl

from looptree.frontend.config import Config
from looptree.frontend.mapping import Compute, Mapping, Temporal
from looptree.frontend._workload_isl._isl import get_projection_map
from looptree.model._looptree.reuse.isl.isl_functions import (
    count_points,
    get_sum_of_pw_qpolynomial,
)
from looptree.model._looptree.reuse.isl.mapping_to_isl import analyze_mapping
from looptree.model._looptree.reuse.isl.mapping_to_isl.skews_from_mapping import (
    skews_from_mapping,
)
from looptree.model._looptree.reuse.isl.mapping_to_isl.tiling import (
    buffer_iter_levels_from_mapping,
    tiling_from_mapping,
)
from looptree.model._looptree.reuse.isl.mapping_to_isl.types import (
    LogicalBuffer,
    MappingAnalysisResult,
    SpatialTag,
    TemporalTag,
)

from ..util import load_pipelined, load_single_buffer


def _read_map(string: str) -> isl.Map:
    return isl.Map.read_from_str(isl.DEFAULT_CONTEXT, string)


class TestTiling(unittest.TestCase):
    def test_two_loop_single_buffer(self):
        workload, mapping = load_single_buffer()
        (leaf,) = mapping.compute_leaves()
        tilings = tiling_from_mapping(mapping, workload)

        self.assertEqual([leaf.id], list(tilings))
        tiling = tilings[leaf.id]
        self.assertEqual(2, tiling.dim(isl.dim_type.in_))
        soln = _read_map(
            "{ E_tiled_iteration[c0, c1] -> E_operation[i, j] : "
            "4c0 <= i <= 4c0 + 3 and 2c1 <= j <= 2c1 + 1 and "
            "0 <= i < 8 and 0 <= j < 4 }"
        )
        self.assertTrue(tiling.is_equal(soln), f"{tiling} != {soln}")
        self.assertEqual(32, count_points(tiling))

    def test_nested_tiling(self):
        workload, _ = load_single_buffer()
        mapping = Mapping(
            nodes=[
                Temporal(rank_variable="i", tile_shape=4),
                Temporal(rank_variable="i", tile_shape=2),
                Temporal(rank_variable="j", tile_shape=1),
                Compute(einsum="E"),
            ]
        )
        tiling = tiling_from_mapping(mapping, workload)[mapping.compute_leaves()[0].id]
        soln = _read_map(
            "{ E_tiled_iteration[c0, c1, c2] -> E_operation[i, j] : "
            "4c0 + 2c1 <= i <= 4c0 + 2c1 + 1 and j = c2 and "
            "c0 >= 0 and 0 <= c1 <= 1 and 0 <= i < 8 and 0 <= j < 4 }"
        )
        self.assertTrue(tiling.is_equal(soln), f"{tiling} != {soln}")
        # Every operation is reached from exactly one iteration.
        self.assertEqual(32, count_points(tiling))
        self.assertEqual(2 * 2 * 4, count_points(tiling.domain()))

    def test_loop_over_foreign_rank_variable(self):
        workload, mapping = load_pipelined()
        tilings = tiling_from_mapping(mapping, workload)
        producer = mapping.compute_leaves()[0]
        # The shared loop iterates over b, which A does not have.
        self.assertFalse(
            tilings[producer.id].domain().dim_has_lower_bound(isl.dim_type.set, 0)
        )

    def test_buffer_levels(self):
        workload, mapping = load_single_buffer("unit_tiles.mapping.yaml")
        (leaf,) = mapping.compute_leaves()
        levels = buffer_iter_levels_from_mapping(mapping)
        self.assertEqual(
            {
                LogicalBuffer("DRAM", "A", leaf.id): 0,
                LogicalBuffer("DRAM", "W", leaf.id): 0,
                LogicalBuffer("DRAM", "D0", leaf.id): 0,
                LogicalBuffer("GLB", "A", leaf.id): 1,
                LogicalBuffer("PE", "W", leaf.id): 2,
                LogicalBuffer("PE", "D0", leaf.id): 2,
            },
            levels,
        )


class TestSkews(unittest.TestCase):
    def test_spatial_ancestor(self):
        _, mapping = load_single_buffer()
        (leaf,) = mapping.compute_leaves()
        skews = skews_from_mapping(mapping)

        skew = skews.lbuf_to_skew[LogicalBuffer("B0", "D0", leaf.id)]
        self.assertEqual((TemporalTag(), SpatialTag(0, "B0")), skew.tags)
        self.assertTrue(
            skew.map_.is_equal(
                _read_map("{ B0_spacetime[t, x] -> E_tiled_iteration[t, x] }")
            )
        )

        leaf_skew = skews.leaf_to_skew[leaf.id]
        self.assertEqual(skew.tags, leaf_skew.tags)
        self.assertEqual("MAC_spacetime", leaf_skew.map_.get_tuple_name(isl.dim_type.in_))

    def test_synthetic_axis(self):
        _, mapping = load_single_buffer("unit_tiles.mapping.yaml")
        (leaf,) = mapping.compute_leaves()
        skews = skews_from_mapping(mapping).lbuf_to_skew

        dram_skews = [skews[LogicalBuffer("DRAM", t, leaf.id)] for t in ("A", "W", "D0")]
        # One shared synthetic axis for all tensors of the buffer.
        for skew in dram_skews:
            self.assertEqual((SpatialTag(0, "DRAM"),), skew.tags)
            self.assertTrue(
                skew.map_.is_equal(
                    _read_map("{ DRAM_spacetime[0] -> E_tiled_iteration[] }")
                )
            )

        glb = skews[LogicalBuffer("GLB", "A", leaf.id)]
        self.assertEqual(
            (SpatialTag(0, "DRAM"), TemporalTag(), SpatialTag(0, "GLB")), glb.tags
        )
        self.assertTrue(
            glb.map_.is_equal(
                _read_map("{ GLB_spacetime[0, t, 0] -> E_tiled_iteration[t] }")
            )
        )

        pe = skews[LogicalBuffer("PE", "W", leaf.id)]
        self.assertEqual(
            (
                SpatialTag(0, "DRAM"),
                TemporalTag(),
                SpatialTag(0, "GLB"),
                SpatialTag(0, "PE"),
            ),
            pe.tags,
        )
        self.assertEqual(pe.tags, skews[LogicalBuffer("PE", "D0", leaf.id)].tags)

    def test_branch_nodes_are_skipped(self):
        _, mapping = load_pipelined()
        skews = skews_from_mapping(mapping)
        for leaf in mapping.compute_leaves():
            self.assertEqual(
                (TemporalTag(), TemporalTag()), skews.leaf_to_skew[leaf.id].tags
            )


class TestOccupancy(unittest.TestCase):
    def test_two_loop_single_buffer(self):
        workload, mapping = load_single_buffer()
        (leaf,) = mapping.compute_leaves()
        result: MappingAnalysisResult = analyze_mapping.occupancies_from_mapping(
            mapping, workload
        )
        lbuf = LogicalBuffer("B0", "D0", leaf.id)
        occupancy = result.lbuf_to_occupancy[lbuf]

        soln = _read_map(
            "{ B0_spacetime[t, x] -> D0[I, J] : "
            "4t <= I <= 4t + 3 and 2x <= J <= 2x + 1 and 0 <= I < 8 and 0 <= J < 4 }"
        )
        self.assertTrue(occupancy.map_.is_equal(soln), f"{occupancy.map_} != {soln}")
        self.assertIsNone(result.pipeline_index)
        self.assertEqual(frozenset(), result.unresolved_leaves)

        ops = result.leaf_to_occupancy[leaf.id]
        self.assertEqual((TemporalTag(), SpatialTag(0, "B0")), ops.tags)
        self.assertEqual(32, get_sum_of_pw_qpolynomial(ops.map_.card()))

    def test_composition_identity(self):
        workload, mapping = load_single_buffer("unit_tiles.mapping.yaml")
        result = analyze_mapping.occupancies_from_mapping(mapping, workload)

        self.assertEqual(6, len(result.lbuf_to_occupancy))
        for lbuf, occupancy in result.lbuf_to_occupancy.items():
            skew = result.lbuf_to_skew[lbuf]
            accesses = get_projection_map(workload.einsum("E"), lbuf.tensor)
            composed = skew.map_.apply_range(
                result.lbuf_tiling[lbuf].apply_range(accesses)
            )
            self.assertTrue(composed.is_equal(occupancy.map_), repr(lbuf))
            self.assertEqual(
                get_sum_of_pw_qpolynomial(composed.card()),
                get_sum_of_pw_qpolynomial(occupancy.map_.card()),
            )

    def test_inert_buffer(self):
        workload, _ = load_single_buffer()
        mapping = Mapping(
            nodes=[
                {"type": "Storage", "component": "GLB", "tensors": ["Z", "A"]},
                {"type": "Compute", "einsum": "E"},
            ]
        )
        result = analyze_mapping.occupancies_from_mapping(mapping, workload)
        leaf = mapping.compute_leaves()[0]
        self.assertIn(LogicalBuffer("GLB", "Z", leaf.id), result.lbuf_to_skew)
        self.assertEqual(
            [LogicalBuffer("GLB", "A", leaf.id)], list(result.lbuf_to_occupancy)
        )

    def test_dump_isl_ir(self):
        workload, mapping = load_single_buffer()
        with self.assertLogs(analyze_mapping.logger, level="INFO") as logs:
            analyze_mapping.occupancies_from_mapping(
                mapping, workload, Config(dump_isl_ir=True)
            )
        self.assertTrue(any("[Tiling]" in line for line in logs.output))
