"""
Handles the ISL spatial reuse functions.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import islpy as isl

from looptree.model._looptree.reuse.isl.isl_functions import (
    insert_equal_dims_map,
    reorder_projector,
)
from looptree.model._looptree.reuse.isl.mapping_to_isl.types import (
    TEMPORAL_TAGS,
    Fill,
    Occupancy,
    SpatialTag,
    Tag,
    TaggedMap,
)

logger = logging.getLogger(__name__)


class Transfers(TaggedMap):
    """Transfers between regions in spacetime."""


class Reads(TaggedMap):
    """Reads between regions in spacetime."""


@dataclass(frozen=True, slots=True)
class TransferInfo:
    """Data transfer information about a certain [subset] of the chip."""

    fulfilled_fill: Transfers
    """Fills done by peer-to-peer transfers."""
    unfulfilled_fill: Fill
    """Fills not done by peers."""
    parent_reads: Reads
    """Fills done by parent-to-child transfers."""
    hops: Optional[isl.PwQPolynomial]
    """Peer-to-peer transfer cost across spacetime, if counted."""

    link_transfer: bool


class TransferModel(ABC):
    """
    A peer-to-peer/multicast transfer model for spatial analysis.
    """

    @abstractmethod
    def apply(self, buffer: str, fills: Fill, occs: Occupancy) -> TransferInfo:
        """
        Given a buffer, its fills across time, and its occupancies across time,
        calculate the spatial transfers.

        Parameters
        ----------
        buffer:
            The component whose spatial analysis is being considered.
        fills:
            The fill of `buffer` across time.
        occs:
            The occupancy of `buffer` across time.

        Returns
        -------
        Fills that were fulfilled by peers, fills that were not, and parent
        reads per position in spacetime. Then, hops per timestep.
        """
        raise NotImplementedError(
            f"{type(self)} has not implemented `apply(self, str, Fill, Occupancy)`"
        )

    def __repr__(self):
        """Returns what transfer model it is."""
        return f"{type(self)}"


class SimpleLinkTransferModel(TransferModel):
    """
    Basic link transfer model: a fill is served by a mesh neighbour if the
    neighbour held the data at the previous time step.
    """

    def __init__(self, count_hops: bool = False):
        self.count_hops = count_hops

    def apply(self, buffer: str, fills: Fill, occs: Occupancy) -> TransferInfo:
        # Necessary but insufficient proof that the fill is for this occupancy.
        assert fills.tags == occs.tags, (
            "Fill and Occupancy mismatch\n"
            "---------------------------\n"
            f"Fill: {fills}\n"
            f"Occs: {occs}\n"
        )

        n: int = fills.map_.dim(isl.dim_type.in_)
        spatial_dims: list[int] = get_spatial_tags_idxs(fills.tags, buffer)
        last_temporal: Optional[int] = get_last_temporal_tag_idx(fills.tags)

        # Without time or space to move across, nothing moves between peers.
        if last_temporal is None or len(spatial_dims) == 0:
            logger.debug("No link transfers possible for %s", buffer)
            return TransferInfo(
                fulfilled_fill=Transfers(fills.tags, fills.map_.subtract(fills.map_)),
                unfulfilled_fill=fills,
                parent_reads=Reads(fills.tags, fills.map_),
                hops=self._hops(fills.map_.subtract(fills.map_)),
                link_transfer=True,
            )

        spacetime: str = occs.map_.get_tuple_name(isl.dim_type.in_)
        connectivity: isl.Map = make_mesh_connectivity(len(spatial_dims), spacetime)
        padded_connectivity: isl.Map = insert_equal_dims_map(
            connectivity, 0, 0, n - len(spatial_dims) - 1
        )
        permutation: list[int] = make_connectivity_permutation(
            spatial_dims, last_temporal, n
        )
        reorder_map: isl.Map = reorder_projector(permutation, spacetime)
        complete_connectivity: isl.Map = reorder_map.apply_range(
            padded_connectivity
        ).apply_range(reorder_map.reverse())

        # Gets data available from neighbors at each point in space per time.
        available_from_neighbors: isl.Map = complete_connectivity.apply_range(occs.map_)
        neighbor_filled: isl.Map = fills.map_.intersect(available_from_neighbors)
        unfulfilled: isl.Map = fills.map_.subtract(neighbor_filled).coalesce()

        return TransferInfo(
            fulfilled_fill=Transfers(fills.tags, neighbor_filled.coalesce()),
            unfulfilled_fill=Fill(fills.tags, unfulfilled),
            parent_reads=Reads(fills.tags, unfulfilled),
            hops=self._hops(neighbor_filled),
            link_transfer=True,
        )

    def _hops(self, transfers: isl.Map) -> Optional[isl.PwQPolynomial]:
        """One hop per transferred element, since only neighbours are linked."""
        if not self.count_hops:
            return None
        wrapped: isl.Set = transfers.wrap()
        return (
            isl.PwQPolynomial.from_qpolynomial(
                isl.QPolynomial.one_on_domain(wrapped.get_space())
            )
            .intersect_domain(wrapped)
            .coalesce()
        )


def make_mesh_connectivity(n: int, spacetime: str) -> isl.Map:
    """
    Makes a neighbor-to-neighbor mesh connection given a number of spatial dims.

    Parameters
    ----------
    n:
        The number of spatial dimensions.
    spacetime:
        The name of the spacetime the mesh is operating on.

    Returns
    -------
    A direct orthogonal adjacency map on the space `spacetime[t, x_1, x_2, ..., x_n]`
    relating each point to its neighbours at the previous time step.
    """
    mesh: isl.Map
    match n:
        case 2:
            mesh = isl.Map.read_from_str(
                isl.DEFAULT_CONTEXT,
                "{ [t, x, y] -> [t-1, x', y'] : "
                " (y'=y and x'=x-1) or (y'=y and x'=x+1) "
                " or (x'=x and y'=y-1) or (x'=x and y'=y+1) }",
            )
        case 1:
            mesh = isl.Map.read_from_str(
                isl.DEFAULT_CONTEXT,
                "{ [t, x] -> [t-1, x'] : (x'=x-1) or (x'=x+1) }",
            )
        case _:
            raise ValueError(f"Cannot make mesh with {n} spatial dims")

    return mesh.set_tuple_name(isl.dim_type.in_, spacetime).set_tuple_name(
        isl.dim_type.out, spacetime
    )


def make_connectivity_permutation(
    spatial_idxs: list[int], temporal_idx: int, dims: int
) -> list[int]:
    """
    Orders the dims of a spacetime as the mesh expects them: every other dim
    in its original order, then the stepped temporal dim, then the spatial dims.

    Parameters
    ----------
    spatial_idxs:
        The dims the mesh spans, in order.
    temporal_idx:
        The dim stepped back by the mesh.
    dims:
        The number of dims of the spacetime.

    Returns
    -------
    The dim placed at each position of the reordered spacetime.
    """
    spatial: set[int] = set(spatial_idxs)
    permutation: list[int] = [
        i for i in range(dims) if i not in spatial and i != temporal_idx
    ]
    permutation.append(temporal_idx)
    permutation.extend(spatial_idxs)
    return permutation


def get_spatial_tags_idxs(tags: tuple[Tag, ...], buffer: str) -> list[int]:
    """
    Given a list of tags, identify the spatial dimensions belonging to `buffer`.

    Parameters
    ----------
    tags:
        The `Occupancy` or `Fill` domain dimension tags.
    buffer:
        The name of the component we're looking for spatial dims over.

    Returns
    -------
    A list of the spatial_dim_idxs in order.
    """
    return [
        i
        for i, tag in enumerate(tags)
        if isinstance(tag, SpatialTag) and tag.buffer == buffer
    ]


def get_last_temporal_tag_idx(tags: tuple[Tag, ...]) -> Optional[int]:
    """
    Returns the idx of the deepest temporal tag in the list, or None if there
    is none.
    """
    for idx, tag in reversed(list(enumerate(tags))):
        if isinstance(tag, TEMPORAL_TAGS):
            return idx
    return None
