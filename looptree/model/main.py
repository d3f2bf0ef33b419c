"""
Evaluation of a fused mapping of a workload: operation counts, fills and
occupancies of every buffer, summarized as piecewise quasi-polynomials over
the spacetime coordinates of each buffer and compute leaf.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import islpy as isl

from looptree.frontend.config import Config, get_config
from looptree.frontend.mapping import Compute, Mapping
from looptree.frontend.workload import EinsumName, TensorName, Workload
from looptree.model._looptree.reuse.isl.isl_functions import (
    dim_projector_mask,
    identity_on_domain,
)
from looptree.model._looptree.reuse.isl.mapping_to_isl.analyze_mapping import (
    occupancies_from_mapping,
)
from looptree.model._looptree.reuse.isl.mapping_to_isl.types import (
    MappingAnalysisResult,
    OperationOccupancy,
    SpatialTag,
    Tag,
)
from looptree.model._looptree.reuse.isl.reuse_analysis import (
    ReuseAnalysisOptions,
    reuse_analysis,
)
from looptree.util.basetypes import load_yaml_files

logger = logging.getLogger(__name__)

BufferTensorEinsum = tuple[str, TensorName, EinsumName]
"(buffer, tensor, einsum) key of the per-buffer results."
TaggedCount = tuple[tuple[Tag, ...], str]
"Tags of the spacetime coordinates and the string of a piecewise quasi-polynomial."


@dataclass
class Result:
    ops: dict[EinsumName, TaggedCount] = field(default_factory=dict)
    """Operations per compute spacetime point."""
    fills: dict[BufferTensorEinsum, TaggedCount] = field(default_factory=dict)
    """Elements delivered into each buffer per spacetime point."""
    fills_by_parent: dict[BufferTensorEinsum, TaggedCount] = field(
        default_factory=dict
    )
    """Part of the fill read from the parent buffer."""
    fills_by_peer: dict[BufferTensorEinsum, TaggedCount] = field(
        default_factory=dict
    )
    """Part of the fill passed from a neighbouring instance."""
    occupancy: dict[BufferTensorEinsum, TaggedCount] = field(default_factory=dict)
    """Elements resident in each buffer per spacetime point."""
    temporal_steps: dict[EinsumName, TaggedCount] = field(default_factory=dict)
    """One per time step of each compute leaf, over its temporal coordinates."""


class LooptreeModel:
    """
    Evaluates a fused mapping of a workload.

    Parameters
    ----------
    workload:
        The cascade of Einsums being executed.
    mapping:
        The fused mapping of the workload onto hardware.
    config:
        Analysis configuration. Read from the environment when omitted.
    """

    def __init__(
        self, workload: Workload, mapping: Mapping, config: Optional[Config] = None
    ):
        self.workload = workload
        self.mapping = mapping
        self.config = config if config is not None else get_config()

    @classmethod
    def from_yaml(
        cls,
        *files: Union[str, Path, List[Union[str, Path]]],
        jinja_parse_data: Optional[Dict[str, Any]] = None,
        config: Optional[Config] = None,
    ) -> "LooptreeModel":
        """Loads the `workload` and `mapping` top keys of one or more yaml files."""
        loaded = load_yaml_files(*files, jinja_parse_data=jinja_parse_data)
        for key in ("workload", "mapping"):
            if key not in loaded:
                raise KeyError(f"Top key {key} not found in {files}")
        return cls(
            Workload(**loaded["workload"]), Mapping(**loaded["mapping"]), config
        )

    def analyze_mapping(self) -> MappingAnalysisResult:
        return occupancies_from_mapping(self.mapping, self.workload, self.config)

    def run(self) -> Result:
        """
        Runs the mapping analysis and reuse analysis and summarizes them.

        Returns
        -------
        The per-buffer fill and occupancy counts, keyed by (buffer, tensor,
        einsum), and the per-einsum operation and time step counts.
        """
        result = Result()
        analysis: MappingAnalysisResult = self.analyze_mapping()

        reuse = reuse_analysis(
            analysis.lbuf_to_occupancy,
            ReuseAnalysisOptions(count_hops=self.config.count_hops),
        )
        for lbuf, stats in reuse.buf_to_stats.items():
            leaf: Compute = self.mapping.node_at(lbuf.leaf)
            key: BufferTensorEinsum = (lbuf.buffer, lbuf.tensor, leaf.einsum)

            result.occupancy[key] = _tagged_card(
                stats.effective_occupancy.tags, stats.effective_occupancy.map_
            )
            result.fills[key] = _tagged_card(stats.fill.tags, stats.fill.map_)
            result.fills_by_parent[key] = _tagged_card(
                stats.parent_reads.tags, stats.parent_reads.map_
            )
            peer_fills: isl.PwQPolynomial = stats.link_transfer.map_.card()
            peer_fills = peer_fills.intersect_domain(stats.fill.map_.domain())
            result.fills_by_peer[key] = (stats.link_transfer.tags, str(peer_fills))

        for leaf_id, occupancy in analysis.leaf_to_occupancy.items():
            leaf: Compute = self.mapping.node_at(leaf_id)
            result.ops[leaf.einsum] = _tagged_card(occupancy.tags, occupancy.map_)
            result.temporal_steps[leaf.einsum] = _temporal_steps(occupancy)

        return result


def _tagged_card(tags: tuple[Tag, ...], map_: isl.Map) -> TaggedCount:
    return tuple(tags), str(map_.card())


def _temporal_steps(occupancy: OperationOccupancy) -> TaggedCount:
    """
    One per point of the leaf's spacetime with its spatial coordinates
    dropped.
    """
    is_spatial: list[bool] = [isinstance(t, SpatialTag) for t in occupancy.tags]
    temporal_tags = tuple(
        t for t, spatial in zip(occupancy.tags, is_spatial) if not spatial
    )
    projector: isl.Map = dim_projector_mask(
        occupancy.map_.get_space().domain(), is_spatial
    )
    non_spatial: isl.Map = projector.apply_range(occupancy.map_)
    return temporal_tags, str(identity_on_domain(non_spatial).card())
