"""
Skews relate the physical spacetime of every logical buffer to the loop
iterations of its compute leaf.

Every loop above a buffer contributes one spacetime coordinate, tagged by
whether the loop runs in time or across a spatial fanout. A buffer with no
spatial loop between it and the previous instance of the same buffer gets one
synthetic spatial coordinate fixed at 0 so that every buffer is placed in
space.
"""

import logging
from typing import List, Optional

import islpy as isl

from looptree.frontend.mapping import (
    Compute,
    Mapping,
    MappingNode,
    # Iterations
    Spatial,
    Temporal,
    # Splits
    Split,
    # Logical hardware features
    Storage,
)
from looptree.model._looptree.mapping_utilities import get_paths
from looptree.model._looptree.reuse.isl.isl_functions import (
    insert_equal_dims_map,
    insert_fixed_dims_in_map,
)

from .errors import MappingStructureError
from .tiling import tiled_iteration_space_name
from .types import (
    LogicalBuffer,
    Skew,
    SkewsInfo,
    SpatialTag,
    Tag,
    TemporalTag,
)

logger = logging.getLogger(__name__)


def spacetime_name(buffer: str) -> str:
    return f"{buffer}_spacetime"


def _fanout_buffer(path: List[MappingNode], loop_idx: int) -> str:
    """The component whose instances the spatial loop at `loop_idx` spreads."""
    loop: Spatial = path[loop_idx]
    if loop.component is not None:
        return loop.component
    for node in path[loop_idx + 1 :]:
        if isinstance(node, Storage):
            return node.component
    leaf: Compute = path[-1]
    return leaf.compute


def _empty_skew_map(leaf: Compute) -> isl.Map:
    return (
        isl.Map.from_multi_aff(
            isl.MultiAff.identity_on_domain_space(
                isl.Space.alloc(isl.DEFAULT_CONTEXT, 0, 0, 0).domain()
            )
        )
        .set_tuple_name(isl.dim_type.in_, spacetime_name(leaf.compute))
        .set_tuple_name(isl.dim_type.out, tiled_iteration_space_name(leaf.einsum))
    )


def _leaf_skew_map(leaf: Compute, n_loops: int) -> isl.Map:
    """The identity from the compute spacetime to all loops of the leaf."""
    coords = ", ".join(f"c{i}" for i in range(n_loops))
    return isl.Map.read_from_str(
        isl.DEFAULT_CONTEXT,
        f"{{ {spacetime_name(leaf.compute)}[{coords}] -> "
        f"{tiled_iteration_space_name(leaf.einsum)}[{coords}] }}",
    )


def skews_from_mapping(mapping: Mapping) -> SkewsInfo:
    """
    Given a mapping, compute the skew of every logical buffer and of every
    compute leaf.

    Parameters
    ----------
    mapping:
        The mapping being analyzed.

    Returns
    -------
    Skew information for every logical buffer and compute leaf. A buffer
    stored more than once on one path keeps the skew of its outermost storage.

    Raises
    ------
    MappingStructureError:
        A path holds a node that is not a loop, storage, branch point or
        compute.
    """
    lbuf_to_skew: dict[LogicalBuffer, Skew] = {}
    leaf_to_skew = {}

    for path in get_paths(mapping):
        leaf: Compute = path[-1]
        tags: List[Tag] = []
        loop_tags: List[Tag] = []
        map_: isl.Map = _empty_skew_map(leaf)
        cur_has_spatial = False
        new_cur_has_spatial = False
        last_buf: Optional[str] = None

        for idx, node in enumerate(path):
            match node:
                case Temporal():
                    tags.append(TemporalTag())
                    loop_tags.append(tags[-1])
                    map_ = insert_equal_dims_map(
                        map_, map_.dim(isl.dim_type.in_), map_.dim(isl.dim_type.out), 1
                    )
                case Spatial():
                    new_cur_has_spatial = True
                    tags.append(SpatialTag(node.name, _fanout_buffer(path, idx)))
                    loop_tags.append(tags[-1])
                    map_ = insert_equal_dims_map(
                        map_, map_.dim(isl.dim_type.in_), map_.dim(isl.dim_type.out), 1
                    )
                case Storage():
                    for tensor in node.tensors:
                        if last_buf == node.component:
                            cur_has_spatial = new_cur_has_spatial or cur_has_spatial
                        else:
                            cur_has_spatial = new_cur_has_spatial
                        last_buf = node.component
                        new_cur_has_spatial = False

                        if not cur_has_spatial:
                            # Place the buffer in a fanout of one instance.
                            tags.append(SpatialTag(0, node.component))
                            map_ = insert_fixed_dims_in_map(
                                map_, map_.dim(isl.dim_type.in_), 1
                            )
                            cur_has_spatial = True

                        lbuf = LogicalBuffer(node.component, tensor, leaf.id)
                        if lbuf in lbuf_to_skew:
                            continue
                        lbuf_to_skew[lbuf] = Skew(
                            tags,
                            map_.set_tuple_name(
                                isl.dim_type.in_, spacetime_name(node.component)
                            ),
                        )
                case Compute():
                    leaf_to_skew[leaf.id] = Skew(
                        loop_tags, _leaf_skew_map(leaf, len(loop_tags))
                    )
                case Split():
                    pass
                case _:
                    raise MappingStructureError(node, leaf)

    logger.debug("Built skews of %d logical buffers", len(lbuf_to_skew))
    return SkewsInfo(lbuf_to_skew, leaf_to_skew)
