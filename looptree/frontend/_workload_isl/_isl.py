import logging
import math

import islpy as isl

from looptree.frontend.workload import (
    Einsum,
    EinsumName,
    RankVariableName,
    TensorName,
    Workload,
)

logger = logging.getLogger(__name__)

EinsumDim = tuple[EinsumName, RankVariableName]


def get_einsum_operation_space(workload: Workload, einsum_name: str) -> isl.Set:
    """Return isl.Set of all operations in an einsum."""
    einsum_shape = workload.get_shape_isl_string(einsum_name)
    rank_variable_names = ",".join(workload.einsum(einsum_name).rank_variables)
    constraint = f" : {einsum_shape}" if einsum_shape else ""
    return isl.Set.read_from_str(
        isl.DEFAULT_CONTEXT,
        f"{{ {einsum_name}_operation[{rank_variable_names}]{constraint} }}",
    )


def get_dim_bounds(isl_set: isl.Set) -> list[int]:
    bounds = []
    for i in range(isl_set.dim(isl.dim_type.set)):
        max_val = isl_set.dim_max_val(i)
        min_val = isl_set.dim_min_val(i)
        if not (max_val.is_int() and min_val.is_int()):
            raise ValueError(
                f"Shape is not an integer. Are all rank variables bounded? "
                f"Bounds [{min_val}, {max_val}] for rank variable {i} in {isl_set}"
            )
        bounds.append(max_val.to_python() - min_val.to_python() + 1)  # max is inclusive
    return bounds


def get_rank_variable_bounds(
    workload: Workload, einsum_name: EinsumName
) -> dict[RankVariableName, int]:
    """Return dictionary mapping rank variable name to bound."""
    operation_space = get_einsum_operation_space(workload, einsum_name)
    dim_shapes = get_dim_bounds(operation_space)
    return dict(zip(workload.einsum(einsum_name).rank_variables, dim_shapes))


def get_projection_multi_aff(einsum: Einsum, tensor: TensorName) -> isl.MultiAff:
    """Return isl.MultiAff of projection from einsum to tensor."""
    rank_variables_str = ",".join(einsum.rank_variables)
    projection = einsum.tensor_access(tensor).projection

    projection_str = ", ".join(
        f"{rank_name}={rank_projection}"
        for rank_name, rank_projection in projection.items()
    )

    return isl.MultiAff.read_from_str(
        isl.DEFAULT_CONTEXT,
        f"{{ {einsum.name}_operation[{rank_variables_str}] -> "
        f"{tensor}[{projection_str}] }}",
    )


def get_projection_map(einsum: Einsum, tensor: TensorName) -> isl.Map:
    """Return isl.Map of projection from einsum to tensor."""
    return isl.Map.from_multi_aff(get_projection_multi_aff(einsum, tensor))


def get_tensor_data_space(workload: Workload, tensor: TensorName) -> isl.Set:
    """
    Get tensor data space based on the operation spaces of 'canonical' Einsums.

    Canonical Einsums are all reader Einsums if the tensor is only ever read or
    all writer Einsums if the tensor is ever an output tensor.
    """
    canonical_einsums = workload.einsums_that_write_tensor(tensor)
    if len(canonical_einsums) == 0:
        canonical_einsums = workload.einsums_that_read_tensor(tensor)
    if len(canonical_einsums) == 0:
        raise KeyError(f"Tensor {tensor} not found in workload")

    tensor_data_space = None
    for einsum in canonical_einsums:
        operation_space = get_einsum_operation_space(workload, einsum.name)
        image = operation_space.apply(get_projection_map(einsum, tensor))
        if tensor_data_space is None:
            tensor_data_space = image
        else:
            tensor_data_space = tensor_data_space.intersect(image)

    return tensor_data_space


def _card_box(data_space: isl.Set) -> int:
    return math.prod(get_dim_bounds(data_space))


def _card(space: isl.Set) -> int:
    if space.is_box():
        return _card_box(space)
    card_pwqp = space.card()
    return card_pwqp.eval(card_pwqp.domain().sample_point()).to_python()


def get_tensor_size(workload: Workload, tensor: TensorName) -> int:
    """Get the size (num. of elements) of a tensor."""
    return _card(get_tensor_data_space(workload, tensor))


def get_operation_space_size(workload: Workload, einsum_name: str) -> int:
    return _card(get_einsum_operation_space(workload, einsum_name))


def _access_coefficients(einsum: Einsum, tensor: TensorName) -> list[list[int]]:
    """Per tensor rank, the coefficient of each of the einsum's rank variables."""
    maff = get_projection_multi_aff(einsum, tensor)
    n_in = maff.dim(isl.dim_type.in_)
    return [
        [
            maff.get_at(rank_idx)
            .get_coefficient_val(isl.dim_type.in_, rv_idx)
            .to_python()
            for rv_idx in range(n_in)
        ]
        for rank_idx in range(maff.dim(isl.dim_type.out))
    ]


def get_einsum_dimension_strides(
    workload: Workload,
) -> dict[EinsumDim, dict[EinsumDim, int]]:
    """
    For every producer rank variable, how far each rank variable of a downstream
    consumer Einsum moves per unit step of the producer rank variable.

    A producer rank variable writing a tensor rank relates to every consumer
    rank variable reading that rank, with the consumer's access coefficient as
    the stride. Strides through chains of Einsums are the product of the direct
    strides; the largest product is kept.
    """
    strides: dict[EinsumDim, dict[EinsumDim, int]] = {}
    for consumer in workload.einsums:
        for tensor in consumer.input_tensors():
            producer_name = workload.writer_einsum(tensor)
            if producer_name is None:
                continue
            producer = workload.einsum(producer_name)
            write_coefs = _access_coefficients(producer, tensor)
            read_coefs = _access_coefficients(consumer, tensor)
            for rank_idx, prod_row in enumerate(write_coefs):
                for prod_idx, prod_coef in enumerate(prod_row):
                    if prod_coef == 0:
                        continue
                    prod_dim = (producer.name, producer.rank_variables[prod_idx])
                    for cons_idx, cons_coef in enumerate(read_coefs[rank_idx]):
                        if cons_coef == 0:
                            continue
                        cons_dim = (consumer.name, consumer.rank_variables[cons_idx])
                        strides.setdefault(prod_dim, {})[cons_dim] = cons_coef

    for _ in range(len(strides)):
        for prod_dim, direct_strides in strides.items():
            for cons_dim, stride in list(direct_strides.items()):
                indirect_strides = list(strides.get(cons_dim, {}).items())
                for indirect_dim, indirect_stride in indirect_strides:
                    direct_strides[indirect_dim] = max(
                        stride * indirect_stride, direct_strides.get(indirect_dim, 0)
                    )

    logger.debug("Einsum dimension strides: %s", strides)
    return strides
