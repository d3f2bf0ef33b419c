from typing import Iterator

from looptree.frontend.mapping import (
    Compute,
    Iteration,
    MappingNode,
    Nested,
    Split,
    Storage,
)
from looptree.model._looptree.reuse.isl.mapping_to_isl.errors import (
    MappingStructureError,
)


def get_paths(mapping: Nested) -> Iterator[list[MappingNode]]:
    """
    Yields every path from the root of `mapping` to a Compute leaf. Paths
    include branch nodes but not the Nested containers holding the nodes.
    """
    cur_path: list[MappingNode] = []
    for node in mapping.nodes:
        if isinstance(node, Split):
            cur_path.append(node)
            for branch in node.nodes:
                for subpath in get_paths(branch):
                    yield cur_path + subpath
            return
        if isinstance(node, Nested):
            for subpath in get_paths(node):
                yield cur_path + subpath
            return
        cur_path.append(node)
        if isinstance(node, Compute):
            if node is not mapping.nodes[-1]:
                raise MappingStructureError(
                    node, reason="a Compute must be the last node of its branch"
                )
            yield cur_path.copy()
            return
        if not isinstance(node, (Iteration, Storage)):
            raise MappingStructureError(node)
    raise MappingStructureError(
        mapping, reason="branch does not end in a Compute or a branch point"
    )


def get_leaves(mapping: Nested) -> Iterator[Compute]:
    for path in get_paths(mapping):
        yield path[-1]


def count_loops(path: list[MappingNode]) -> int:
    return sum(1 for node in path if isinstance(node, Iteration))
