"""
File for all the functions that conduct tiling analysis for the overall mapping
analysis.
"""

import logging
from typing import Optional

import islpy as isl

from looptree.frontend.mapping import (
    Compute,
    Iteration,
    Mapping,
    MappingNode,
    Storage,
)
from looptree.frontend.workload import RankVariableName, Workload
from looptree.frontend._workload_isl._isl import (
    get_einsum_dimension_strides,
    get_einsum_operation_space,
)
from looptree.model._looptree.mapping_utilities import get_paths
from looptree.model._looptree.reuse.isl.isl_functions import project_dim_in_after

from .types import BranchTiling, LogicalBuffer, LogicalBufTiling, Tiling

logger = logging.getLogger(__name__)


def tiled_iteration_space_name(einsum: str) -> str:
    return f"{einsum}_tiled_iteration"


def _iterator_names(n_loops: int, rank_variables: list[RankVariableName]) -> list[str]:
    """Names for the loop coordinates that do not clash with any rank variable."""
    taken = set(rank_variables)
    prefix = "c"
    while any(f"{prefix}{i}" in taken for i in range(n_loops)):
        prefix += "c"
    return [f"{prefix}{i}" for i in range(n_loops)]


def _tile_constraints(
    rank_variable: RankVariableName, tiles: list[tuple[str, int]]
) -> list[str]:
    """
    Constraints placing `rank_variable` in the tile selected by the loops
    iterating over it. `tiles` holds (iterator, tile shape) pairs, outermost
    loop first.

    The rank variable ranges over the whole innermost tile, so a tiling whose
    innermost tile shape is not 1 relates each iteration to several operations.
    """
    offset = " + ".join(f"{shape}*{iterator}" for iterator, shape in tiles)
    last_shape = tiles[-1][1]
    constraints = [f"{offset} <= {rank_variable} <= {offset} + {last_shape - 1}"]
    constraints.extend(f"{iterator} >= 0" for iterator, _ in tiles)
    # Mixed radix: an inner loop stays within one tile of the loop above it.
    for (_, outer_shape), (inner, inner_shape) in zip(tiles, tiles[1:]):
        constraints.append(f"{inner_shape}*{inner} <= {outer_shape - 1}")
    return constraints


def _strides_into(
    strides: dict, rank_variable: RankVariableName, einsum_name: str
) -> dict[RankVariableName, int]:
    result = {}
    for (_, prod_rank_variable), consumers in strides.items():
        if prod_rank_variable != rank_variable:
            continue
        for (cons_einsum, cons_rank_variable), stride in consumers.items():
            if cons_einsum == einsum_name:
                result[cons_rank_variable] = stride
    return result


def tiling_of_path(
    path: list[MappingNode],
    workload: Workload,
    strides: Optional[dict] = None,
) -> Tiling:
    """
    Builds `{ E_tiled_iteration[loops] -> E_operation[rank variables] }` for the
    compute leaf ending `path`, with one coordinate per loop on the path.

    For a rank variable tiled by loops with tile shapes T_1..T_m, outermost
    first, the constraints are `sum T_k*c_k <= d <= sum T_k*c_k + T_m - 1`,
    `c_k >= 0`, and `T_inner*c_inner <= T_outer - 1` between neighbouring
    loops. The rank variable ranges over the whole innermost tile, so the
    tiling is multi-valued unless the innermost tile shape is 1. Counting
    iterations then counts tiles, not operations: operations equal time steps
    times spatial instances only for unit innermost tiles.
    """
    leaf: Compute = path[-1]
    einsum = workload.einsum(leaf.einsum)
    rank_variables: list[RankVariableName] = einsum.rank_variables
    loops: list[Iteration] = [node for node in path if isinstance(node, Iteration)]
    iterators = _iterator_names(len(loops), rank_variables)

    rank_var_to_tiles: dict[RankVariableName, list[tuple[str, int]]] = {}
    for iterator, loop in zip(iterators, loops):
        if loop.tile_shape is None:
            continue
        if loop.rank_variable not in rank_variables:
            # Loops over another Einsum's rank variables are left unconstrained.
            logger.debug(
                "%s in the path to %s iterates over %s, which %s does not have. "
                "Strides to its rank variables: %s",
                loop,
                leaf,
                loop.rank_variable,
                einsum.name,
                _strides_into(strides or {}, loop.rank_variable, einsum.name),
            )
            continue
        rank_var_to_tiles.setdefault(loop.rank_variable, []).append(
            (iterator, loop.tile_shape)
        )

    constraints: list[str] = []
    for rank_variable, tiles in rank_var_to_tiles.items():
        constraints.extend(_tile_constraints(rank_variable, tiles))

    condition = f" : {' and '.join(constraints)}" if constraints else ""
    tiling: Tiling = isl.Map.read_from_str(
        isl.DEFAULT_CONTEXT,
        f"{{ {tiled_iteration_space_name(einsum.name)}[{', '.join(iterators)}] -> "
        f"{einsum.name}_operation[{', '.join(rank_variables)}]{condition} }}",
    )
    return tiling.intersect_range(get_einsum_operation_space(workload, einsum.name))


def tiling_from_mapping(mapping: Mapping, workload: Workload) -> BranchTiling:
    """
    Given a mapping and a workload, build the tiling of every compute leaf.

    Parameters
    ----------
    mapping:
        The mapping being analyzed.
    workload:
        The workload the mapping maps.

    Returns
    -------
    The tiling of each compute leaf, keyed by the leaf's node id. The range of
    each tiling is bounded by the operation space of the leaf's Einsum.
    """
    strides = get_einsum_dimension_strides(workload)
    result: BranchTiling = {}
    for path in get_paths(mapping):
        result[path[-1].id] = tiling_of_path(path, workload, strides)
    return result


def buffer_iter_levels_from_mapping(mapping: Mapping) -> dict[LogicalBuffer, int]:
    """
    The number of loops above every logical buffer in the mapping. When a path
    stores the same tensor in the same component twice, the outermost storage
    node is the one recorded.
    """
    result: dict[LogicalBuffer, int] = {}
    for path in get_paths(mapping):
        leaf: Compute = path[-1]
        iter_idx = 0
        for node in path:
            if isinstance(node, Storage):
                for tensor in node.tensors:
                    result.setdefault(
                        LogicalBuffer(node.component, tensor, leaf.id), iter_idx
                    )
            elif isinstance(node, Iteration):
                iter_idx += 1
    return result


def logical_buf_tiling_from_mapping(
    mapping: Mapping, branch_tiling: BranchTiling
) -> LogicalBufTiling:
    """Tiling of each logical buffer, keeping only the loops above the buffer."""
    return {
        buf: project_dim_in_after(branch_tiling[buf.leaf], level)
        for buf, level in buffer_iter_levels_from_mapping(mapping).items()
    }
