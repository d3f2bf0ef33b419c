"""
ISL functions that encapsulate more commonly used workflows in looptree for the
sake of code concision.

ISL drops the name of a tuple whenever dimensions are inserted into or removed
from it, so the wrappers here restore names afterwards.
"""

import logging
from typing import List, Optional, Union

import islpy as isl

logger = logging.getLogger(__name__)


def _restore_name(
    map_: isl.Map, dim_type: isl.dim_type, name: Optional[str]
) -> isl.Map:
    if name is None:
        return map_
    return map_.set_tuple_name(dim_type, name)


def project_dim_in_after(map_: isl.Map, start: int) -> isl.Map:
    """
    Projects out the input dims of idx [start, end] in map_.

    Parameters
    ----------
    map_:
        The map to project out dims from.
    start:
        The dim idx to start projecting dims out from.

    Returns
    -------
    map_ without the input dims [start:]. The input tuple keeps its name.
    """
    n_dim_in: int = map_.dim(isl.dim_type.in_)
    if start >= n_dim_in:
        return map_
    name: Optional[str] = map_.get_tuple_name(isl.dim_type.in_)
    map_ = map_.project_out(isl.dim_type.in_, start, n_dim_in - start)
    return _restore_name(map_, isl.dim_type.in_, name)


def dim_projector_mask(space: isl.Space, mask: List[bool]) -> isl.Map:
    """
    Given a set space, create a map that relates the space without the dims
    marked `True` in the mask to the full space.

    Parameters
    ----------
    space:
        The set space the projector is created on.
    mask:
        The mask of the list of dims to be projected out.

    Returns
    -------
    A relation from in[x_i : not mask[i]] -> out[x_0, ..., x_n] where the kept
    dims are equal and the masked dims are unconstrained. Applying an `out`
    relation to it drops the masked dims from that relation's domain. Both
    tuples keep the name of `space`.
    """
    name: Optional[str] = space.get_tuple_name(isl.dim_type.set)
    projector: isl.Map = isl.Map.identity(space.map_from_set())

    for i in range(len(mask) - 1, -1, -1):
        if mask[i]:
            projector = projector.project_out(isl.dim_type.in_, i, 1)

    projector = _restore_name(projector, isl.dim_type.in_, name)
    return _restore_name(projector, isl.dim_type.out, name)


def insert_dims_preserve_name_map(
    map_: isl.Map, dim_type: isl.dim_type, pos: int, n: int
) -> isl.Map:
    """
    Wrapper of `isl.Map.insert_dims` that preserves the space name post
    insertion.

    Parameters
    ----------
    map_:
        The inserting map.
    dim_type:
        The dimension tuple we're inserting into.
    pos:
        The position to start inserting into, inclusive.
    n:
        The number of dimensions to insert.

    Returns
    -------
    Dimension-inserted maps with preservation.
    """
    name: Optional[str] = map_.get_tuple_name(dim_type)
    map_ = map_.insert_dims(dim_type, pos, n)
    if name is None:
        logger.debug("unnamed space for %s", map_)
    return _restore_name(map_, dim_type, name)


def insert_equal_dims_map(map_: isl.Map, in_pos: int, out_pos: int, n: int) -> isl.Map:
    """
    Given a map, insert equal numbers of input and output dimensions and enforce
    equality between the values of the two dims.

    Parameters
    ----------
    map_:
        The map base to insert dims into.
    in_pos:
        The index to start inserting input dimensions at in `map_`.
    out_pos:
        The index to start inserting output dimensions at in `map_`.
    n:
        The number of dimensions to insert.

    Returns
    -------
    A new map which is equivalent to `map_` except it has `n` new input and
    output dimensions starting at `in_pos` and `out_pos` respectively.
    """
    map_ = insert_dims_preserve_name_map(map_, isl.dim_type.in_, in_pos, n)
    map_ = insert_dims_preserve_name_map(map_, isl.dim_type.out, out_pos, n)

    local_space: isl.LocalSpace = isl.LocalSpace.from_space(map_.get_space())
    for i in range(n):
        # out - in == 0 => out == in
        constraint: isl.Constraint = isl.Constraint.alloc_equality(local_space)
        constraint = constraint.set_coefficient_val(isl.dim_type.in_, in_pos + i, 1)
        constraint = constraint.set_coefficient_val(isl.dim_type.out, out_pos + i, -1)
        map_ = map_.add_constraint(constraint)

    return map_


def insert_fixed_dims_in_map(
    map_: isl.Map, pos: int, n: int, value: int = 0
) -> isl.Map:
    """
    Inserts `n` input dims at `pos` whose only allowed value is `value`.

    Returns
    -------
    A map relating `[..., value, ..., value, ...]` to whatever `map_` related
    the input without the new dims to.
    """
    map_ = insert_dims_preserve_name_map(map_, isl.dim_type.in_, pos, n)
    for i in range(n):
        map_ = map_.fix_input_si(pos + i, value)
    return map_


def constrain_dim_equals(map_: isl.Map, n: int) -> isl.Map:
    """
    Constrains each of the first `n` input dims of `map_` to equal the output
    dim at the same position.
    """
    local_space: isl.LocalSpace = isl.LocalSpace.from_space(map_.get_space())
    for i in range(n):
        # in - out == 0 => in == out
        constraint: isl.Constraint = isl.Constraint.alloc_equality(local_space)
        constraint = constraint.set_coefficient_val(isl.dim_type.in_, i, 1)
        constraint = constraint.set_coefficient_val(isl.dim_type.out, i, -1)
        map_ = map_.add_constraint(constraint)
    return map_


def map_to_prior_coordinate(n_in_dims: int, shifted_idx: int, name: str) -> isl.Map:
    """
    Create a map that relates a current index vector to every earlier index
    vector that can still have data resident, given that the data was brought in
    at loop `shifted_idx`.

    Goal: { [i0,...,i{n_in_dims-1}] -> [i0, ..., i{shifted_idx-1}-1, *, ..., *] }
          union
          { [i0,...,i{n_in_dims-1}] -> [i0, ..., i{shifted_idx-1}, j...] :
            j... lexicographically before i{shifted_idx}... }

    Parameters
    ----------
    n_in_dims:
        The number of input/output dims of the iteration space.
    shifted_idx:
        The number of leading coordinates shared with the prior index vector
        before the decremented one.
    name:
        The name for the domain and range of the shifter.

    Returns
    -------
    A map relating a current index vector to prior index vectors.

    Preconditions
    -------------
    -   0 <= shifted_idx <= n_in_dims
    """
    space: isl.Space = isl.Space.alloc(isl.DEFAULT_CONTEXT, 0, n_in_dims, n_in_dims)
    map_: isl.Map = isl.Map.empty(space)
    local_space: isl.LocalSpace = isl.LocalSpace.from_space(space)

    constraint: isl.Constraint
    if shifted_idx > 0:
        tmp_map: isl.Map = isl.Map.universe(space)
        # out - in == 0 => out == in
        for i in range(shifted_idx - 1):
            constraint = isl.Constraint.alloc_equality(local_space)
            constraint = constraint.set_coefficient_val(isl.dim_type.out, i, 1)
            constraint = constraint.set_coefficient_val(isl.dim_type.in_, i, -1)
            tmp_map = tmp_map.add_constraint(constraint)

        # out - in + 1 == 0 => out == in - 1
        constraint = isl.Constraint.alloc_equality(local_space)
        constraint = constraint.set_coefficient_val(
            isl.dim_type.out, shifted_idx - 1, 1
        )
        constraint = constraint.set_coefficient_val(
            isl.dim_type.in_, shifted_idx - 1, -1
        )
        constraint = constraint.set_constant_val(1)
        tmp_map = tmp_map.add_constraint(constraint)

        map_ = map_.union(tmp_map)

    if shifted_idx < n_in_dims:
        tmp_map = isl.Map.lex_gt(
            isl.Space.set_alloc(isl.DEFAULT_CONTEXT, 0, n_in_dims - shifted_idx)
        )
        tmp_map = insert_equal_dims_map(tmp_map, 0, 0, shifted_idx)
        map_ = map_.union(tmp_map)

    return map_.set_tuple_name(isl.dim_type.in_, name).set_tuple_name(
        isl.dim_type.out, name
    )


def map_to_shifted(domain_space: isl.Space, pos: int, shift: int) -> isl.Map:
    """
    Given a `domain_space`, return a map from a point in the `domain_space` to
    a point in that dimension `shift` ahead in the dimension at `pos`.

    Returns
    -------
    A mapping from `[x_0, x_1, ..., x_n] -> [x_0, ..., x_{pos} + shift, ..., x_n]`
    on `domain_space`.
    """
    maff: isl.MultiAff = isl.MultiAff.identity(domain_space.map_from_set())
    maff = maff.set_at(pos, maff.get_at(pos).add_constant_val(shift))
    return isl.Map.from_multi_aff(maff)


def reorder_projector(
    permutation: list[int], space: str, ctx: isl.Context = isl.DEFAULT_CONTEXT
) -> isl.Map:
    """
    A projection reordering the dims of a space so that output dim `k` is input
    dim `permutation[k]`.

    Parameters
    ----------
    permutation:
        The input dim placed at each output position.
    space:
        The name of the space being permuted.

    Returns
    -------
    { space[i_0, ..., i_n] -> space[i_{permutation[0]}, ..., i_{permutation[n]}] }
    """
    in_dims = ", ".join(f"i{i}" for i in range(len(permutation)))
    out_dims = ", ".join(f"i{p}" for p in permutation)
    return isl.Map.read_from_str(
        ctx, f"{{ {space}[{in_dims}] -> {space}[{out_dims}] }}"
    )


def identity_on_domain(map_: isl.Map) -> isl.Map:
    """The identity relation restricted to the domain of `map_`."""
    domain: isl.Set = map_.domain()
    return isl.Map.identity(domain.get_space().map_from_set()).intersect_domain(
        domain
    )


def get_sum_of_pw_qpolynomial(pwqp: isl.PwQPolynomial) -> int:
    """
    Sums a piecewise quasi-polynomial over every integer point of its domain.
    The domain must be bounded.
    """
    total: list[int] = [0]

    def accumulate(point: isl.Point) -> None:
        total[0] += pwqp.eval(point).to_python()

    pwqp.domain().foreach_point(accumulate)
    return total[0]


def count_points(obj: Union[isl.Set, isl.Map]) -> int:
    """Number of integer points in a bounded set, or pairs in a bounded map."""
    if isinstance(obj, isl.Map):
        obj = obj.wrap()
    if obj.is_empty():
        return 0
    card: isl.PwQPolynomial = obj.card()
    return card.eval(card.domain().sample_point()).to_python()
