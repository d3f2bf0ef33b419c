import os
import unittest
from unittest import mock

import islpy as isl

from looptree.frontend.config import (
    DUMP_ISL_IR_VAR,
    USER_CUSTOM_CONFIG_PATH_VAR,
    Config,
    get_config,
)
from looptree.frontend.mapping import Mapping
from looptree.frontend.workload import Workload
from looptree.model import LooptreeModel
from looptree.model._looptree.reuse.isl.mapping_to_isl.types import (
    LogicalBuffer,
    Occupancy,
    SpatialTag,
    TemporalTag,
)
from looptree.model._looptree.reuse.isl.reuse_analysis import (
    ReuseAnalysisOptions,
    reuse_analysis,
)

from .util import (
    PIPELINED_DATA,
    TEST_CONFIG_PATH,
    load_single_buffer,
    total,
)


class TestModel(unittest.TestCase):
    def test_single_buffer(self):
        workload, mapping = load_single_buffer()
        result = LooptreeModel(workload, mapping, Config()).run()

        tags, ops = result.ops["E"]
        self.assertEqual((TemporalTag(), SpatialTag(0, "B0")), tags)
        self.assertEqual(32, total(ops))

        key = ("B0", "D0", "E")
        self.assertEqual([key], list(result.fills))
        # Output tiles never overlap, so every element is filled exactly once.
        self.assertEqual(32, total(result.fills[key][1]))
        self.assertEqual(32, total(result.fills_by_parent[key][1]))
        self.assertEqual(32, total(result.occupancy[key][1]))
        self.assertEqual((TemporalTag(),), result.temporal_steps["E"][0])
        self.assertEqual(2, total(result.temporal_steps["E"][1]))

    def test_unit_tiles(self):
        workload, mapping = load_single_buffer("unit_tiles.mapping.yaml")
        result = LooptreeModel(workload, mapping, Config()).run()

        self.assertEqual(
            {
                ("DRAM", "A", "E"),
                ("DRAM", "W", "E"),
                ("DRAM", "D0", "E"),
                ("GLB", "A", "E"),
                ("PE", "W", "E"),
                ("PE", "D0", "E"),
            },
            set(result.fills),
        )
        n_ops = total(result.ops["E"][1])
        self.assertEqual(32, n_ops)
        # One operation per PE per time step.
        self.assertEqual(n_ops, total(result.temporal_steps["E"][1]) * 4)

        # W stays in the PEs for the whole run.
        self.assertEqual(4, total(result.fills[("PE", "W", "E")][1]))
        self.assertEqual(8, total(result.fills[("GLB", "A", "E")][1]))
        self.assertEqual(8, total(result.fills[("DRAM", "A", "E")][1]))

    def test_inert_buffer(self):
        workload, _ = load_single_buffer()
        mapping = Mapping(
            nodes=[
                {"type": "Storage", "component": "GLB", "tensors": ["Z", "A"]},
                {"type": "Compute", "einsum": "E"},
            ]
        )
        result = LooptreeModel(workload, mapping, Config()).run()
        self.assertEqual([("GLB", "A", "E")], list(result.fills))
        self.assertEqual(8, total(result.fills[("GLB", "A", "E")][1]))

    def test_peer_fills(self):
        # Neighbouring PEs read overlapping windows of A.
        workload = Workload(
            shape={"t": "0 <= t < 2", "x": "0 <= x < 2"},
            einsums=[
                {
                    "name": "E",
                    "tensor_accesses": [
                        {"name": "A", "projection": {"A0": "t + x"}},
                        {"name": "O", "projection": ["t", "x"], "output": True},
                    ],
                }
            ],
        )
        mapping = Mapping(
            nodes=[
                {"type": "Temporal", "rank_variable": "t", "tile_shape": 1},
                {"type": "Spatial", "rank_variable": "x", "tile_shape": 1},
                {"type": "Storage", "component": "PE", "tensors": ["A"]},
                {"type": "Compute", "einsum": "E"},
            ]
        )
        result = LooptreeModel(workload, mapping, Config()).run()

        key = ("PE", "A", "E")
        tags, peer_fills = result.fills_by_peer[key]
        self.assertEqual((TemporalTag(), SpatialTag(0, "PE")), tags)
        # PE 1 holds A[1] at t = 0, which PE 0 needs at t = 1.
        self.assertEqual(1, total(peer_fills))
        self.assertEqual(4, total(result.fills[key][1]))
        self.assertEqual(3, total(result.fills_by_parent[key][1]))

    def test_from_yaml(self):
        path = TEST_CONFIG_PATH / "pipelined"
        model = LooptreeModel.from_yaml(
            path / "pipelined.workload.yaml",
            path / "pipelined.mapping.yaml",
            jinja_parse_data=PIPELINED_DATA,
            config=Config(),
        )
        analysis = model.analyze_mapping()
        self.assertEqual(1, analysis.pipeline_index)
        self.assertEqual(frozenset(), analysis.unresolved_leaves)

        result = model.run()
        self.assertEqual(8, total(result.ops["A"][1]))
        self.assertEqual(8, total(result.ops["B"][1]))
        self.assertEqual(
            {("GLB", "X", "A"), ("GLB", "D", "A"), ("GLB", "D", "B"), ("GLB", "Y", "B")},
            set(result.fills),
        )
        self.assertEqual(8, total(result.fills[("GLB", "D", "B")][1]))

    def test_from_yaml_missing_key(self):
        path = TEST_CONFIG_PATH / "pipelined"
        with self.assertRaises(KeyError):
            LooptreeModel.from_yaml(path / "pipelined.mapping.yaml", config=Config())


class TestPeerFills(unittest.TestCase):
    def test_peer_fills_within_fill(self):
        occ = Occupancy(
            [TemporalTag(), SpatialTag(0, "PE"), SpatialTag(1, "PE")],
            isl.Map.read_from_str(
                isl.DEFAULT_CONTEXT,
                "{ PE_spacetime[t, x, y] -> data[t + x + y] : "
                "0 <= x < 2 and 0 <= y < 2 and 0 <= t < 2 }",
            ),
        )
        lbuf = LogicalBuffer("PE", "data", 0)
        stats = reuse_analysis(
            {lbuf: occ}, ReuseAnalysisOptions(count_hops=True)
        ).buf_to_stats[lbuf]

        link_transfer = stats.link_transfer.map_
        self.assertFalse(link_transfer.is_empty())
        self.assertTrue(link_transfer.is_subset(stats.fill.map_))
        self.assertTrue(
            stats.parent_reads.map_.union(link_transfer).is_equal(stats.fill.map_)
        )
        self.assertIsNotNone(stats.hops)


class TestConfig(unittest.TestCase):
    def test_default(self):
        with mock.patch.dict(os.environ):
            os.environ.pop(USER_CUSTOM_CONFIG_PATH_VAR, None)
            os.environ.pop(DUMP_ISL_IR_VAR, None)
            config = get_config()
        self.assertIsNone(config.max_inference_rounds)
        self.assertFalse(config.count_hops)
        self.assertFalse(config.dump_isl_ir)

    def test_from_env(self):
        path = str(TEST_CONFIG_PATH / "pipelined" / "config.yaml")
        with mock.patch.dict(os.environ, {USER_CUSTOM_CONFIG_PATH_VAR: path}):
            config = get_config()
        self.assertEqual(5, config.max_inference_rounds)
        self.assertTrue(config.count_hops)

    def test_missing_file(self):
        path = str(TEST_CONFIG_PATH / "missing.yaml")
        with mock.patch.dict(os.environ, {USER_CUSTOM_CONFIG_PATH_VAR: path}):
            with self.assertRaises(FileNotFoundError):
                get_config()

    def test_dump_isl_ir_from_env(self):
        with mock.patch.dict(os.environ, {DUMP_ISL_IR_VAR: "1"}):
            self.assertTrue(Config().dump_isl_ir)
            self.assertFalse(Config(dump_isl_ir=False).dump_isl_ir)
        with mock.patch.dict(os.environ, {DUMP_ISL_IR_VAR: "0"}):
            self.assertFalse(Config().dump_isl_ir)

    def test_bad_version(self):
        with self.assertRaises(ValueError):
            Config(version="9.9")
