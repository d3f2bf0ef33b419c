"""
Errors raised while lowering a mapping into ISL relations.
"""

from typing import Iterable, Optional

from looptree.frontend.mapping import MappingNode, NodeId


class MappingAnalysisError(Exception):
    """Base class of every failure of the mapping analysis."""


class MappingStructureError(MappingAnalysisError):
    """A node of a kind that cannot appear where it was found."""

    def __init__(
        self, node: MappingNode, leaf: Optional[MappingNode] = None, reason: str = ""
    ):
        self.node = node
        self.leaf = leaf
        message = f"Unexpected {type(node).__name__} node {node}"
        if leaf is not None:
            message += f" on the path to {leaf}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PipelineIndexError(MappingAnalysisError):
    """Inference needs a pipeline index but the mapping has no branch point."""


class LoopBoundInferenceError(MappingAnalysisError):
    """Loop bound inference did not reach a fixpoint within its round cap."""

    def __init__(self, unstable_leaves: Iterable[NodeId], n_rounds: int):
        self.unstable_leaves = sorted(unstable_leaves)
        self.n_rounds = n_rounds
        super().__init__(
            f"Loop bound inference did not converge after {n_rounds} rounds. "
            f"Tilings of leaves {self.unstable_leaves} were still changing."
        )
