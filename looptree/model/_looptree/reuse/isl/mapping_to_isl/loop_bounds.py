"""
Loop bound inference.

When a consumer Einsum reads a tensor that a producer Einsum writes, and both
are fused below shared loops, the producer only has to compute the part of the
tensor that the consumer needs at the current step and that is not still
buffered from an earlier step. This pass tightens the tilings of producer
leaves to exactly those iterations, repeating until no tiling changes.
"""

import logging
from typing import Optional

import islpy as isl

from looptree.frontend.mapping import Compute, Iteration, Mapping, NodeId, Split, Storage
from looptree.frontend.workload import EinsumName, TensorName, Workload
from looptree.frontend._workload_isl._isl import (
    get_einsum_operation_space,
    get_projection_map,
    get_tensor_data_space,
)
from looptree.model._looptree.mapping_utilities import get_paths
from looptree.model._looptree.reuse.isl.isl_functions import (
    constrain_dim_equals,
    map_to_prior_coordinate,
    project_dim_in_after,
)

from .errors import LoopBoundInferenceError, PipelineIndexError
from .types import BranchTiling, Tiling

logger = logging.getLogger(__name__)


def branch_idx_from_mapping(mapping: Mapping) -> Optional[int]:
    """
    The number of loops above the first branch point of the mapping, found on
    the first path that has one. None if the mapping has no branch point.
    """
    for path in get_paths(mapping):
        n_loops = 0
        for node in path:
            if isinstance(node, Split):
                return n_loops
            if isinstance(node, Iteration):
                n_loops += 1
    return None


def dspace_top_idx_from_mapping(mapping: Mapping) -> dict[TensorName, int]:
    """The number of loops above the outermost storage node of every tensor."""
    dspace_to_idx: dict[TensorName, int] = {}
    for path in get_paths(mapping):
        loop_idx = 0
        for node in path:
            if isinstance(node, Storage):
                for tensor in node.tensors:
                    dspace_to_idx.setdefault(tensor, loop_idx)
            elif isinstance(node, Iteration):
                loop_idx += 1
    return dspace_to_idx


def is_bounded_below(tiling: Tiling) -> bool:
    domain: isl.Set = tiling.domain()
    return all(
        domain.dim_has_lower_bound(isl.dim_type.set, i)
        for i in range(domain.dim(isl.dim_type.set))
    )


def required_producer_operations(
    consumer_tiling: Tiling,
    consumer: EinsumName,
    producer: EinsumName,
    tensor: TensorName,
    workload: Workload,
    pipeline_idx: int,
    top_idx: Optional[int],
) -> isl.Map:
    """
    Relates each step of the consumer at the pipeline index to the producer
    operations that compute the part of `tensor` the consumer needs at that step
    and does not still hold from earlier steps.
    """
    consumer_einsum = workload.einsum(consumer)
    pruned_tiling: isl.Map = project_dim_in_after(
        consumer_tiling, pipeline_idx
    ).intersect_range(get_einsum_operation_space(workload, consumer))
    required_data: isl.Map = pruned_tiling.apply_range(
        get_projection_map(consumer_einsum, tensor)
    )

    if top_idx is None:
        computed_data = required_data
    else:
        n_in: int = pruned_tiling.dim(isl.dim_type.in_)
        shifter: isl.Map = map_to_prior_coordinate(
            n_in,
            min(top_idx, n_in),
            pruned_tiling.get_tuple_name(isl.dim_type.in_),
        )
        buffered_data: isl.Map = shifter.apply_range(required_data)
        computed_data = required_data.subtract(buffered_data).coalesce()
    computed_data = computed_data.intersect_range(
        get_tensor_data_space(workload, tensor)
    )

    producer_write_dep: isl.Map = get_projection_map(workload.einsum(producer), tensor)
    return computed_data.apply_range(producer_write_dep.reverse()).intersect_range(
        get_einsum_operation_space(workload, producer)
    )


def restrict_to_required(
    producer_tiling: Tiling, required_ops: isl.Map, pipeline_idx: int
) -> Tiling:
    """
    Restricts `producer_tiling` to the iterations computing `required_ops`,
    holding the coordinates above the pipeline index equal to the consumer's.
    """
    required_iters: isl.Map = required_ops.apply_range(producer_tiling.reverse())
    n_shared: int = min(
        pipeline_idx,
        required_iters.dim(isl.dim_type.in_),
        required_iters.dim(isl.dim_type.out),
    )
    required_iters = constrain_dim_equals(required_iters, n_shared)
    return producer_tiling.intersect_domain(required_iters.range()).coalesce()


def infer_loop_bounds(
    tilings: BranchTiling,
    mapping: Mapping,
    workload: Workload,
    pipeline_idx: Optional[int],
    dspace_top_idx: dict[TensorName, int],
    max_rounds: Optional[int] = None,
) -> tuple[BranchTiling, frozenset[NodeId]]:
    """
    Tightens producer tilings to the iterations their consumers require.

    Parameters
    ----------
    tilings:
        The tiling of every compute leaf.
    mapping:
        The mapping the tilings were built from.
    workload:
        The workload being mapped.
    pipeline_idx:
        The number of loops shared by the fused Einsums.
    dspace_top_idx:
        The number of loops above the outermost storage of every tensor.
    max_rounds:
        Cap on the number of rounds. Defaults to one more than the number of
        leaves.

    Returns
    -------
    The inferred tilings and the leaves whose tilings are still not bounded
    below on every coordinate.

    Raises
    ------
    PipelineIndexError:
        A consumer needs inference but the mapping has no branch point.
    LoopBoundInferenceError:
        Tilings were still changing when the round cap was reached.
    """
    inferred: BranchTiling = dict(tilings)
    leaf_ids: list[NodeId] = list(inferred)
    leaf_to_einsum: dict[NodeId, EinsumName] = {}
    einsum_to_leaves: dict[EinsumName, list[NodeId]] = {}
    for leaf_id in leaf_ids:
        leaf: Compute = mapping.node_at(leaf_id)
        leaf_to_einsum[leaf_id] = leaf.einsum
        einsum_to_leaves.setdefault(leaf.einsum, []).append(leaf_id)

    cap: int = max_rounds if max_rounds is not None else len(leaf_ids) + 1
    dirty: set[NodeId] = set(leaf_ids)
    n_rounds = 0
    while dirty:
        if n_rounds >= cap:
            raise LoopBoundInferenceError(dirty, n_rounds)
        n_rounds += 1
        to_process = [leaf_id for leaf_id in leaf_ids if leaf_id in dirty]
        dirty = set()

        for leaf_id in to_process:
            tiling = inferred[leaf_id]
            if not is_bounded_below(tiling):
                logger.debug("Deferring leaf %s with unbounded tiling %s", leaf_id, tiling)
                continue

            einsum = leaf_to_einsum[leaf_id]
            for tensor in sorted(workload.tensors_read_by_einsum(einsum)):
                producer = workload.writer_einsum(tensor)
                if producer is None:
                    logger.debug("%s read by %s is a workload input", tensor, einsum)
                    continue
                producer_leaves = einsum_to_leaves.get(producer, [])
                if not producer_leaves:
                    logger.debug(
                        "Producer %s of %s is not in the mapping", producer, tensor
                    )
                    continue
                if pipeline_idx is None:
                    raise PipelineIndexError(
                        f"{einsum} reads {tensor} from {producer}, but the mapping "
                        f"has no branch point to pipeline them at."
                    )

                required_ops = required_producer_operations(
                    tiling,
                    einsum,
                    producer,
                    tensor,
                    workload,
                    pipeline_idx,
                    dspace_top_idx.get(tensor),
                )
                for producer_leaf in producer_leaves:
                    old_tiling = inferred[producer_leaf]
                    new_tiling = restrict_to_required(
                        old_tiling, required_ops, pipeline_idx
                    )
                    if not new_tiling.is_equal(old_tiling):
                        inferred[producer_leaf] = new_tiling
                        dirty.add(producer_leaf)

    logger.debug("Loop bound inference converged after %d rounds", n_rounds)
    unresolved = frozenset(
        leaf_id for leaf_id in leaf_ids if not is_bounded_below(inferred[leaf_id])
    )
    if unresolved:
        logger.warning(
            "Tilings of leaves %s are not bounded below after loop bound inference",
            sorted(unresolved),
        )
    return inferred, unresolved
