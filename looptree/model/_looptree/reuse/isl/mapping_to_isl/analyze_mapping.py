"""
Flow of analysis:
-   From mapping, create the tiled iteration space. The tiled iteration space
    has one coordinate per loop on the path to each compute leaf.
-   Create the relation from tiled iteration space to operation space.
-   Tighten the relations of producers with loop bound inference.
-   Create the relation from the spacetime of each logical buffer to the tiled
    iteration space (the skew).
-   Compose skew, tiling and data accesses into the occupancy of each logical
    buffer.
"""

import logging
from typing import Optional

import islpy as isl

from looptree.frontend.config import Config, get_config
from looptree.frontend.mapping import Compute, Mapping, NodeId
from looptree.frontend.workload import Workload
from looptree.frontend._workload_isl._isl import get_projection_map
from looptree.model._looptree.reuse.isl.isl_functions import project_dim_in_after

from .loop_bounds import (
    branch_idx_from_mapping,
    dspace_top_idx_from_mapping,
    infer_loop_bounds,
)
from .skews_from_mapping import skews_from_mapping
from .tiling import logical_buf_tiling_from_mapping, tiling_from_mapping
from .types import (
    BranchTiling,
    LogicalBuffer,
    LogicalBufTiling,
    MappingAnalysisResult,
    Occupancy,
    OperationOccupancy,
    Skew,
    SkewsInfo,
    Tiling,
)

logger = logging.getLogger(__name__)


def align_dim_names(
    map_: isl.Map,
    reference: isl.Map,
    map_align_dim_type: isl.dim_type = isl.dim_type.in_,
    reference_dim_type: Optional[isl.dim_type] = None,
) -> isl.Map:
    """
    Given an `isl.Map` and a reference `isl.Map`, align as many of the names as
    possible in the first map with the reference map.

    e.g. `map_ = [i] -> [o]` with `reference = [x] -> [y]` becomes `[x] -> [o]`

    Parameters
    ----------
    map_:
        The map whose dims are being renamed.
    reference:
        The map whose dim names are copied.
    map_align_dim_type:
        Dimension tuple in `map_` to align. Defaults to `isl.dim_type.in_`.
    reference_dim_type:
        Dimension tuple in `reference` whose names should be copied. Defaults to
        `map_align_dim_type`.

    Returns
    -------
    A version of `map_` with aligned names.
    """
    if reference_dim_type is None:
        reference_dim_type = map_align_dim_type

    for dim_idx in range(
        min(map_.dim(map_align_dim_type), reference.dim(reference_dim_type))
    ):
        dim_name: Optional[str] = reference.get_dim_name(reference_dim_type, dim_idx)
        if dim_name is not None:
            map_ = map_.set_dim_name(map_align_dim_type, dim_idx, dim_name)

    return map_


def compose_occupancy(skew: Skew, tiling: Tiling, accesses: isl.Map) -> isl.Map:
    """
    Spacetime -> data relation: the data `accesses` touches over the
    iterations `skew` relates each spacetime coordinate to.
    """
    n_loops: int = skew.map_.dim(isl.dim_type.out)
    aligned_skew: isl.Map = align_dim_names(
        skew.map_, tiling, isl.dim_type.out, isl.dim_type.in_
    )
    return aligned_skew.apply_range(
        project_dim_in_after(tiling.apply_range(accesses), n_loops).set_tuple_name(
            isl.dim_type.in_, aligned_skew.get_tuple_name(isl.dim_type.out)
        )
    )


def _log_ir(label: str, relations: dict) -> None:
    for key, relation in relations.items():
        logger.info("[%s] %s: %s", label, key, relation)


def occupancies_from_mapping(
    mapping: Mapping, workload: Workload, config: Optional[Config] = None
) -> MappingAnalysisResult:
    """
    Given a Mapping and a Workload, extract the data occupancies in memory.

    Parameters
    ----------
    mapping:
        The Mapping of data to hardware.
    workload:
        The Workload occurring on chip.
    config:
        Analysis configuration. Read from the environment when omitted.

    Returns
    -------
    The occupancies as an analysis of the Workload on Mapping.
    """
    if config is None:
        config = get_config()

    branch_tiling: BranchTiling = tiling_from_mapping(mapping, workload)
    # tiling: [tiled_iteration] -> [operation]
    if config.dump_isl_ir:
        _log_ir("Tiling", branch_tiling)

    pipeline_idx: Optional[int] = branch_idx_from_mapping(mapping)
    branch_tiling, unresolved = infer_loop_bounds(
        branch_tiling,
        mapping,
        workload,
        pipeline_idx,
        dspace_top_idx_from_mapping(mapping),
        config.max_inference_rounds,
    )
    if config.dump_isl_ir:
        _log_ir("Inferred tiling", branch_tiling)

    lbuf_tiling: LogicalBufTiling = logical_buf_tiling_from_mapping(
        mapping, branch_tiling
    )
    skews: SkewsInfo = skews_from_mapping(mapping)
    # skew: [spacetime] -> [tiled_iteration]
    if config.dump_isl_ir:
        _log_ir("Skew", skews.lbuf_to_skew)

    occupancies: dict[LogicalBuffer, Occupancy] = {}
    for lbuf, skew in skews.lbuf_to_skew.items():
        leaf: Compute = mapping.node_at(lbuf.leaf)
        einsum = workload.einsum(leaf.einsum)
        if lbuf.tensor not in einsum.tensor_names:
            logger.debug("%s is not accessed by %s", lbuf, einsum.name)
            continue
        # Read and write accesses of one tensor share a projection.
        accesses = get_projection_map(einsum, lbuf.tensor)

        occupancies[lbuf] = Occupancy(
            skew.tags, compose_occupancy(skew, lbuf_tiling[lbuf], accesses)
        )
    if config.dump_isl_ir:
        _log_ir("Occupancy", occupancies)

    operation_occupancies: dict[NodeId, OperationOccupancy] = {}
    for leaf_id, skew in skews.leaf_to_skew.items():
        tiling: Tiling = branch_tiling[leaf_id]
        operation_occupancies[leaf_id] = OperationOccupancy(
            skew.tags,
            skew.map_.apply_range(
                project_dim_in_after(
                    tiling, skew.map_.dim(isl.dim_type.out)
                ).set_tuple_name(
                    isl.dim_type.in_, skew.map_.get_tuple_name(isl.dim_type.out)
                )
            ),
        )

    return MappingAnalysisResult(
        branch_tiling=branch_tiling,
        lbuf_tiling=lbuf_tiling,
        lbuf_to_skew=skews.lbuf_to_skew,
        lbuf_to_occupancy=occupancies,
        leaf_to_occupancy=operation_occupancies,
        pipeline_index=pipeline_idx,
        unresolved_leaves=unresolved,
    )
