"""
Relations produced by the mapping analysis and the tags describing their
coordinates.
"""

from abc import ABC
from dataclasses import dataclass, field
from typing import Optional, Sequence, TypeAlias, Union

import islpy as isl

from looptree.frontend.mapping import NodeId
from looptree.frontend.workload import EinsumName, TensorName

__all__ = [
    "EinsumName",
    "TensorName",
    "Tiling",
    "BranchTiling",
    "LogicalBufTiling",
    "Tag",
    "TemporalTag",
    "SpatialTag",
    "TEMPORAL_TAGS",
    "TaggedMap",
    "Occupancy",
    "OperationOccupancy",
    "Fill",
    "Skew",
    "LogicalBuffer",
    "SkewsInfo",
    "MappingAnalysisResult",
]

##
#   @brief Iteration -> Operation relation that specifies the tiling.
#
#   The domain has one coordinate per loop on the path to a compute leaf. A
#   tiling with unknown tile shapes may be multiple-valued; loop bound
#   inference tightens it before the nest analysis uses it.
Tiling: TypeAlias = isl.Map
"Tiling of data and operations."
BranchTiling: TypeAlias = dict[NodeId, Tiling]
"Relation between a compute leaf and its tiling."


@dataclass(frozen=True, slots=True)
class Tag(ABC):  # pylint: disable=too-few-public-methods
    """Metadata on what a coordinate of a spacetime relation represents."""


@dataclass(frozen=True, slots=True)
class TemporalTag(Tag):  # pylint: disable=too-few-public-methods
    """The coordinate is a time step."""


@dataclass(frozen=True, slots=True)
class SpatialTag(Tag):  # pylint: disable=too-few-public-methods
    """The coordinate is a position in a spatial fanout."""

    spatial_dim: Union[int, str]
    "The fanout dimension the coordinate spreads across."
    buffer: Optional[str]
    "The component whose instances the coordinate spreads across."


TEMPORAL_TAGS = (TemporalTag,)


@dataclass(frozen=True, slots=True)
class TaggedMap:  # pylint: disable=too-few-public-methods
    """A :class:`isl.Map` with its input dimensions tagged."""

    tags: tuple[Tag, ...]
    map_: isl.Map

    def __repr__(self):
        return f"{type(self).__name__}({list(self.tags)}, {self.map_})"


def _check_tags(kind: str, tags: Sequence[Tag], map_: isl.Map) -> None:
    assert len(tags) == map_.dim(isl.dim_type.in_), (
        f"{kind} labels input dims with tags\n"
        "-------------------------------------\n"
        f"tags: {tags}\n"
        f"map: {map_}\n"
    )


class Occupancy(TaggedMap):  # pylint: disable=too-few-public-methods
    """Spacetime -> data held by a logical buffer."""

    def __init__(self, tags: Sequence[Tag], map_: isl.Map):
        _check_tags("Occupancy", tags, map_)
        super().__init__(tuple(tags), map_)


class OperationOccupancy(TaggedMap):  # pylint: disable=too-few-public-methods
    """Spacetime -> operations performed by a compute leaf."""

    def __init__(self, tags: Sequence[Tag], map_: isl.Map):
        super().__init__(tuple(tags), map_)


class Fill(TaggedMap):
    """Spacetime -> data delivered into a logical buffer."""

    def __init__(self, tags: Sequence[Tag], map_: isl.Map):
        _check_tags("Fill", tags, map_)
        super().__init__(tuple(tags), map_)


class Skew(TaggedMap):  # pylint: disable=too-few-public-methods
    """
    Spacetime -> tiled iteration. Relates each physical coordinate of a buffer
    to the loop iterations it holds data for.
    """

    def __init__(self, tags: Sequence[Tag], map_: isl.Map):
        super().__init__(tuple(tags), map_)


@dataclass(frozen=True, slots=True)
class LogicalBuffer:
    """
    One instantiation of a buffer: the component holding the tensor, the tensor
    held, and the compute leaf consuming it.
    """

    buffer: str
    "The component holding the tensor."
    tensor: TensorName
    "The tensor being held."
    leaf: NodeId
    "The compute leaf on whose path the buffer is."


LogicalBufTiling: TypeAlias = dict[LogicalBuffer, Tiling]
"Tilings projected to the loops above each logical buffer."


@dataclass(frozen=True, slots=True)
class SkewsInfo:  # pylint: disable=too-few-public-methods
    """Skews of every logical buffer and of every compute leaf."""

    lbuf_to_skew: dict[LogicalBuffer, Skew]
    """Relates a :class:`~.LogicalBuffer` to its :class:`~.Skew`"""
    leaf_to_skew: dict[NodeId, Skew]
    """Relates a compute leaf to the skew over all of its loops."""


@dataclass(frozen=True, slots=True)
class MappingAnalysisResult:  # pylint: disable=too-few-public-methods
    """
    Results of mapping analysis that will become input into reuse
    analysis.
    """

    branch_tiling: BranchTiling
    """Tiling of each compute leaf after loop bound inference."""
    lbuf_tiling: LogicalBufTiling
    """Tiling of each logical buffer."""
    lbuf_to_skew: dict[LogicalBuffer, Skew]
    """Skew of each logical buffer."""
    lbuf_to_occupancy: dict[LogicalBuffer, Occupancy]
    """The occupancy of every logical buffer that its einsum reads or writes."""
    leaf_to_occupancy: dict[NodeId, OperationOccupancy]
    """The operations of every compute leaf over its spacetime."""
    pipeline_index: Optional[int] = None
    """Number of loops above the first branch point, if any."""
    unresolved_leaves: frozenset[NodeId] = field(default_factory=frozenset)
    """Leaves whose tilings stayed unbounded through loop bound inference."""
