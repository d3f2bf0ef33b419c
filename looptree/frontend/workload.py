import re
from typing import Annotated, Optional, TypeAlias

from pydantic import AfterValidator, field_validator

from looptree.util.basetypes import ParsableModel
from looptree.version import assert_version, __version__


EinsumName: TypeAlias = str
TensorName: TypeAlias = str
RankVariableName: TypeAlias = str
RankName: TypeAlias = str


CLIST_OPERATORS = [
    "EQ",
    "NE",
    "LT",
    "GT",
    "LE",
    "GE",
    "NG",
    "NL",
    "AND",
    "OR",
]

ISL_REGEX = re.compile(
    r"\b(?!(?:" + "|".join(CLIST_OPERATORS) + r")\b)[a-zA-Z#$@][a-zA-Z0-9_]*\b"
)


def _unique_in_order(items) -> list:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class ImpliedProjection(dict):
    pass


def projection_factory(projection: dict | list):
    if isinstance(projection, list):
        for i, x in enumerate(projection):
            if not isinstance(x, str):
                raise TypeError(f"Element at index {i} must be a string, got {type(x)}")
            if not ISL_REGEX.fullmatch(x):
                raise ValueError(
                    f"Element '{x}' at index {i} is not a valid ISL identifier. "
                    f"In a projection list, all elements must be valid ISL identifiers. "
                    f"For expressions, use a dictionary projection."
                )
        projection = ImpliedProjection({x.upper(): x for x in projection})
    elif not isinstance(projection, dict):
        raise TypeError(
            f"Invalid projection: {projection}. Must be a list of "
            f"rank variables or a dictionary of rank variable to projection."
        )
    for key in projection:
        if not isinstance(key, str):
            raise TypeError(f"Invalid projection key: {key}. Must be a string.")
        if not key.isidentifier():
            raise ValueError(
                f"Invalid projection key: {key}. Must be a valid identifier. "
                f"Check with the Python isidentifier() function."
            )
    return projection


class TensorAccess(ParsableModel):
    """
    Information about how an Einsum accesses a tensor.
    :param name:        The tensor being accessed.
    :param projection:  The subscript expressions of the tensor.
                        This can be a list of rank variables (must be single
                        rank variables and the rank name is the uppercase of the
                        rank variable) or a dictionary mapping rank names to
                        subscript expressions.
    :param output:      Whether the tensor is an output.
    """

    name: TensorName
    projection: dict[str, str] | list[str]
    output: bool = False

    def model_post_init(self, __context__=None) -> None:
        super().model_post_init(__context__)
        self.projection = projection_factory(self.projection)

    @property
    def ranks(self) -> tuple[RankName, ...]:
        return tuple(self.projection.keys())

    @property
    def rank_variables(self) -> list[RankVariableName]:
        """Rank variables in order of first appearance in the subscripts."""
        # Projection values may be expressions, so we need to grab all identifiers
        return _unique_in_order(
            re.findall(ISL_REGEX, " ".join(self.projection.values()))
        )


class Einsum(ParsableModel):
    """
    Represents a computation step in the workload as an Einsum.

    :param name:                The name of the einsum.
    :param tensor_accesses:     The tensors accessed by the einsum.
    :param shape:               Bounds of valid rank variable values, as ISL
                                constraints.
    :param rank_variable_order: Order of the operation space coordinates. If
                                omitted, rank variables are ordered by first
                                appearance, output tensors first.
    """

    name: EinsumName
    tensor_accesses: list[TensorAccess]
    shape: list[str] = []
    rank_variable_order: Optional[list[RankVariableName]] = None

    @field_validator("shape", mode="before")
    @classmethod
    def _shape_factory(cls, shape: list | str):
        if isinstance(shape, str):
            shape = [shape]
        return shape

    def model_post_init(self, __context__=None) -> None:
        super().model_post_init(__context__)
        if self.rank_variable_order is not None:
            derived = set(self._rank_variables_by_appearance())
            given = self.rank_variable_order
            if len(given) != len(set(given)) or set(given) != derived:
                raise ValueError(
                    f"rank_variable_order {given} of Einsum {self.name} must be "
                    f"a permutation of its rank variables {sorted(derived)}"
                )

    def _rank_variables_by_appearance(self) -> list[RankVariableName]:
        ordered = [t for t in self.tensor_accesses if t.output]
        ordered += [t for t in self.tensor_accesses if not t.output]
        return _unique_in_order(rv for t in ordered for rv in t.rank_variables)

    @property
    def rank_variables(self) -> list[RankVariableName]:
        if self.rank_variable_order is not None:
            return list(self.rank_variable_order)
        return self._rank_variables_by_appearance()

    @property
    def tensor_names(self) -> set[TensorName]:
        return {t.name for t in self.tensor_accesses}

    def input_tensors(self) -> set[TensorName]:
        return {t.name for t in self.tensor_accesses if not t.output}

    def output_tensors(self) -> set[TensorName]:
        return {t.name for t in self.tensor_accesses if t.output}

    def tensor_access(self, tensor: TensorName) -> TensorAccess:
        for t in self.tensor_accesses:
            if t.name == tensor:
                return t
        raise KeyError(f"Einsum {self.name} does not access tensor {tensor}")


class Workload(ParsableModel):
    """
    The workload described as a cascade of Einsums.
    :param version: The looptree version the input is compliant with.
    :param einsums: Computation steps in the workload expressed as einsums.
    :param shape:   Mapping from rank variable name to bounds of valid rank
                    variable values.
    """

    version: Annotated[str, AfterValidator(assert_version)] = __version__
    einsums: list[Einsum] = []
    shape: dict[RankVariableName, str] = {}

    def model_post_init(self, __context__=None) -> None:
        super().model_post_init(__context__)
        self._validate()

    def _validate(self):
        tensor2ranks = {}
        tensor2writer = {}
        einsum_names = set()
        for einsum in self.einsums:
            if einsum.name in einsum_names:
                raise ValueError(f"Einsum name {einsum.name} is not unique")
            einsum_names.add(einsum.name)
            for tensor_access in einsum.tensor_accesses:
                tensor2ranks.setdefault(tensor_access.name, tensor_access.ranks)
                if tensor2ranks[tensor_access.name] != tensor_access.ranks:
                    raise ValueError(
                        f"Tensor {tensor_access.name} has inconsistent ranks. Found "
                        f"{tensor2ranks[tensor_access.name]} and {tensor_access.ranks}. "
                        f"Tensor is in Einsums "
                        f"{', '.join(e.name for e in self.einsums_with_tensor(tensor_access.name))}"
                    )
                if tensor_access.output:
                    writer = tensor2writer.setdefault(tensor_access.name, einsum.name)
                    if writer != einsum.name:
                        raise ValueError(
                            f"Tensor {tensor_access.name} is written by both "
                            f"{writer} and {einsum.name}. Only one writer is allowed."
                        )

    def einsum(self, einsum_name: EinsumName) -> Einsum:
        for e in self.einsums:
            if e.name == einsum_name:
                return e
        raise KeyError(f"Einsum {einsum_name} not found in workload")

    @property
    def einsum_names(self) -> list[EinsumName]:
        return [e.name for e in self.einsums]

    @property
    def tensor_names(self) -> set[TensorName]:
        return {t.name for e in self.einsums for t in e.tensor_accesses}

    def einsums_with_tensor(self, tensor: TensorName) -> list[Einsum]:
        return [e for e in self.einsums if tensor in e.tensor_names]

    def tensors_read_by_einsum(self, einsum_name: EinsumName) -> set[TensorName]:
        return self.einsum(einsum_name).input_tensors()

    def tensors_written_by_einsum(self, einsum_name: EinsumName) -> set[TensorName]:
        return self.einsum(einsum_name).output_tensors()

    def einsums_that_read_tensor(self, tensor: TensorName) -> list[Einsum]:
        return [e for e in self.einsums if tensor in e.input_tensors()]

    def einsums_that_write_tensor(self, tensor: TensorName) -> list[Einsum]:
        return [e for e in self.einsums if tensor in e.output_tensors()]

    def writer_einsum(self, tensor: TensorName) -> Optional[EinsumName]:
        """The Einsum producing `tensor`, or None if the tensor is a workload input."""
        writers = self.einsums_that_write_tensor(tensor)
        if not writers:
            return None
        return writers[0].name

    def accesses_for_tensor(self, tensor: TensorName) -> list[TensorAccess]:
        return [t for e in self.einsums for t in e.tensor_accesses if t.name == tensor]

    @property
    def intermediate_tensor_names(self) -> set[TensorName]:
        return {
            t
            for t in self.tensor_names
            if self.einsums_that_read_tensor(t) and self.einsums_that_write_tensor(t)
        }

    def einsum_dim_to_idx(self, einsum_name: EinsumName) -> dict[RankVariableName, int]:
        return {
            rv: i for i, rv in enumerate(self.einsum(einsum_name).rank_variables)
        }

    def tensor_dim_to_idx(self, tensor: TensorName) -> dict[RankName, int]:
        accesses = self.accesses_for_tensor(tensor)
        if not accesses:
            raise KeyError(f"Tensor {tensor} not found in workload")
        return {rank: i for i, rank in enumerate(accesses[0].ranks)}

    def get_shape_isl_string(self, einsum_name: EinsumName) -> str:
        einsum = self.einsum(einsum_name)
        global_shape = [self.shape[r] for r in einsum.rank_variables if r in self.shape]
        return " and ".join(term for term in einsum.shape + global_shape)
