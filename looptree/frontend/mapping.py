"""
The mapping tree: loops, storage bindings, compute leaves and the branch points
that fuse several Einsums under shared loops.
"""

from abc import ABC
from typing import (
    Annotated,
    List,
    Optional,
    Type,
    TypeAlias,
    TypeVar,
    Union,
)

from pydantic import AfterValidator, Discriminator, PositiveInt, PrivateAttr, Tag

from looptree.frontend.workload import EinsumName, RankVariableName, TensorName
from looptree.util.basetypes import ParsableModel, get_tag
from looptree.version import assert_version, __version__

T = TypeVar("T", bound="MappingNode")
"""TypeVar T: Restricts the allowable types to types of MappingNodes."""

NodeId: TypeAlias = int
"""Identifier of a node, unique within a Mapping."""

NodeList: TypeAlias = List[
    Annotated[
        Union[
            Annotated["Temporal", Tag("Temporal")],
            Annotated["Spatial", Tag("Spatial")],
            Annotated["Storage", Tag("Storage")],
            Annotated["Compute", Tag("Compute")],
            Annotated["Pipeline", Tag("Pipeline")],
            Annotated["Sequential", Tag("Sequential")],
            Annotated["Nested", Tag("Nested")],
        ],
        Discriminator(get_tag),
    ]
]
"""
TypeAlias NodeList: list that can contain and discriminate between MappingNodes
of different types using their `type` field.
"""


class MappingNode(ParsableModel, ABC):
    """
    Represents a Node in the Mapping, which can be a loop, a storage node, a compute
    node, etc.
    """

    id: Optional[NodeId] = None
    """ Identifier of the node. Assigned by the enclosing Mapping if omitted. """

    def get_nodes_of_type(self, *types: Type[T]) -> List[T]:
        return [node for node in self.flatten() if isinstance(node, types)]

    def flatten(self) -> list["MappingNode"]:
        """This node and all of its descendants in depth-first pre-order."""
        if isinstance(self, MappingNodeWithChildren):
            result = [self]
            for node in self.nodes:
                result.extend(node.flatten())
            return result
        return [self]

    def compact_str(self) -> str:
        return self.__class__.__name__

    def __str__(self) -> str:
        return f"{self.compact_str()}#{self.id}"


class Iteration(MappingNode):
    """
    A loop over one rank variable. `tile_shape` is the number of operations
    (along the rank variable) covered by one iteration of this loop; when it is
    None the loop's extent is left to be inferred.
    """

    rank_variable: RankVariableName
    tile_shape: Optional[PositiveInt] = None

    def compact_str(self) -> str:
        tile = "?" if self.tile_shape is None else self.tile_shape
        return f"{self.__class__.__name__}({self.rank_variable}, {tile})"


class Temporal(Iteration):
    """A sequential loop. Each iteration happens at a different time."""


class Spatial(Iteration):
    """
    A parallel loop. Each iteration happens at a different spatial location at
    the same time.
    """

    name: Union[int, str] = 0
    """ The dimension of the spatial fanout this loop is mapped to. """
    component: Optional[str] = None
    """ The component whose instances the loop is spread across. """


class Storage(MappingNode):
    """Binds `component` to hold a tile of each of `tensors` at this level."""

    tensors: list[TensorName]
    component: str

    def compact_str(self) -> str:
        return f"Storage({self.component}: {', '.join(self.tensors)})"


class Compute(MappingNode):
    """A leaf performing the operations of `einsum` on the `compute` unit."""

    einsum: EinsumName
    compute: str = "MAC"

    def compact_str(self) -> str:
        return f"Compute({self.einsum} on {self.compute})"


class MappingNodeWithChildren(MappingNode):
    """
    A :class:`~.MappingNode` that also contains children.
    """

    nodes: NodeList = []
    """ The child nodes. """


class Nested(MappingNodeWithChildren):
    """
    A :class:`~.MappingNodeWithChildren` where the last Node may, but is not
    obligated to be, a :class:`~.MappingNodeWithChildren` and where all other
    nodes are guaranteed to be not :class:`~.MappingNodeWithChildren`.
    """

    def model_post_init(self, __context__=None) -> None:
        super().model_post_init(__context__)
        for node in list(self.nodes)[:-1]:
            if isinstance(node, MappingNodeWithChildren):
                raise ValueError(
                    f"{node.compact_str()} is not the last node of its Nested. "
                    f"Only the last child can have children."
                )


class Split(MappingNodeWithChildren):
    """
    A :class:`~.MappingNodeWithChildren` whose children are the branches of the
    mapping below it. Loops above the split are shared by all branches.
    """

    nodes: list[Nested] = []


class Pipeline(Split):
    """
    A :class:`~.Split` where the branches are processed in parallel, each
    consuming the tiles of its producers as they are produced.
    """


class Sequential(Split):
    """
    A :class:`~.Split` where the branches are processed in series.
    """


class Mapping(Nested):
    """
    The root of a mapping tree. Node identifiers are assigned on construction to
    every node that does not have one, in depth-first pre-order.
    """

    version: Annotated[str, AfterValidator(assert_version)] = __version__

    _nodes_by_id: dict[NodeId, MappingNode] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context__=None) -> None:
        super().model_post_init(__context__)
        nodes = self.flatten()

        explicit: dict[NodeId, MappingNode] = {}
        for node in nodes:
            if node.id is None:
                continue
            if node.id in explicit:
                raise ValueError(
                    f"Node id {node.id} is used by both "
                    f"{explicit[node.id].compact_str()} and {node.compact_str()}"
                )
            explicit[node.id] = node

        next_id = 0
        for node in nodes:
            if node.id is not None:
                continue
            while next_id in explicit:
                next_id += 1
            node.id = next_id
            explicit[next_id] = node

        self._nodes_by_id = explicit

    def node_at(self, node_id: NodeId) -> MappingNode:
        try:
            return self._nodes_by_id[node_id]
        except KeyError:
            raise KeyError(f"No node with id {node_id} in mapping") from None

    def compute_leaves(self) -> list[Compute]:
        return self.get_nodes_of_type(Compute)

    def loops(self) -> list[Iteration]:
        return self.get_nodes_of_type(Iteration)


MappingNodeWithChildren.model_rebuild()
Nested.model_rebuild()
Split.model_rebuild()
Pipeline.model_rebuild()
Sequential.model_rebuild()
Mapping.model_rebuild()
