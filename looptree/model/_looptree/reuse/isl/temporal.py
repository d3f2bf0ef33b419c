"""
Temporal reuse: which data a buffer keeps from one time step to the next, and
which data has to be delivered into it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import islpy as isl

from looptree.model._looptree.reuse.isl.isl_functions import (
    dim_projector_mask,
    insert_dims_preserve_name_map,
    map_to_shifted,
)
from looptree.model._looptree.reuse.isl.mapping_to_isl.types import (
    TEMPORAL_TAGS,
    Fill,
    Occupancy,
    Tag,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemporalReuse:
    effective_occupancy: Occupancy
    """
    The occupancy without the temporal dims it does not change across, i.e.,
    the data that must be resident in the buffer per time step.
    """
    fill: Fill
    """Data delivered into the buffer at each point of its spacetime."""


def analyze_temporal_reuse(
    occ: Occupancy, exploit_reuse: bool = True, multi_loop_reuse: bool = True
) -> TemporalReuse:
    """
    Computes the fill that satisfies a buffer occupancy.

    Parameters
    ----------
    occ:
        The logical occupancy to be temporally analyzed.
    exploit_reuse:
        Whether data resident at one time step stays for the next. When False,
        the whole occupancy is filled at every time step.
    multi_loop_reuse:
        Whether data stays resident when a loop above the innermost one the
        occupancy depends on steps. When False, only the previous step of that
        innermost loop is reused.

    Returns
    -------
    The effective occupancy and the fill, over the same tagged spacetime.
    """
    if not exploit_reuse:
        return TemporalReuse(occ, Fill(occ.tags, occ.map_))
    return fill_from_occupancy(occ, multi_loop_reuse)


def _drop_stationary_dims(
    occ: isl.Map, tags: list[Tag]
) -> tuple[isl.Map, list[Tag], Optional[int]]:
    """
    Projects out temporal dims, innermost first, for as long as `occ` does not
    change across them.

    Returns
    -------
    The reduced occupancy, its tags, and the index of the innermost temporal
    dim `occ` changes across, or None if there is none.
    """
    name: Optional[str] = occ.get_tuple_name(isl.dim_type.in_)
    tags = list(tags)
    for dim_idx in range(len(tags) - 1, -1, -1):
        if not isinstance(tags[dim_idx], TEMPORAL_TAGS):
            continue
        projected: isl.Map = occ.project_out(isl.dim_type.in_, dim_idx, 1)
        if name is not None:
            projected = projected.set_tuple_name(isl.dim_type.in_, name)
        reinserted: isl.Map = insert_dims_preserve_name_map(
            projected, isl.dim_type.in_, dim_idx, 1
        ).intersect_domain(occ.domain())
        if not (occ.plain_is_equal(reinserted) or occ.is_equal(reinserted)):
            return occ, tags, dim_idx
        occ = projected
        del tags[dim_idx]
    return occ, tags, None


def fill_from_occupancy(
    occupancy: Occupancy, multiple_loop_reuse: bool
) -> TemporalReuse:
    """
    Fill and effective occupancy of a buffer that keeps its data between time
    steps.

    Parameters
    ----------
    occupancy:
        The logical occupancy of data in logical buffers.
    multiple_loop_reuse:
        If data is kept across steps of loops above the innermost one the
        occupancy depends on.

    Returns
    -------
    The occupancy without its stationary temporal dims, and the data it holds
    that it did not hold at the previous time step.
    """
    occ, tags, dim_idx = _drop_stationary_dims(occupancy.map_, occupancy.tags)
    if dim_idx is None:
        # Nothing changes over time: everything is filled once.
        occ = occ.coalesce()
        return TemporalReuse(Occupancy(tags, occ), Fill(tags, occ))

    time_shift: isl.Map
    if multiple_loop_reuse:
        time_shift = construct_time_shift(occ, tags)
    else:
        time_shift = map_to_shifted(occ.domain().get_space(), dim_idx, -1)

    fill: isl.Map = occ.subtract(time_shift.apply_range(occ)).coalesce()
    logger.debug("Fill of %s: %s", occ.get_tuple_name(isl.dim_type.in_), fill)
    return TemporalReuse(Occupancy(tags, occ), Fill(tags, fill))


def _project_spacetime(spacetime: isl.Set, keep: list[bool], suffix: str) -> isl.Map:
    """`spacetime` -> the coordinates marked in `keep`, in a space named by `suffix`."""
    projection: isl.Map = dim_projector_mask(
        spacetime.get_space(), [not k for k in keep]
    ).reverse()
    return projection.set_tuple_name(
        isl.dim_type.out, f"{spacetime.get_tuple_name()}_{suffix}"
    ).intersect_domain(spacetime)


def construct_time_shift(occ: isl.Map, tags: list[Tag]) -> isl.Map:
    """
    Relates every point of the spacetime of `occ` to the most recent earlier
    time step at the same position in space.

    Parameters
    ----------
    occ:
        The occupancy map we're analyzing the reuse for.
    tags:
        The tags of what an input represents.

    Returns
    -------
    The relation of each spacetime point to its predecessor in time.
    """
    spacetime: isl.Set = occ.domain()
    is_temporal: list[bool] = [isinstance(t, TEMPORAL_TAGS) for t in tags]
    to_time: isl.Map = _project_spacetime(spacetime, is_temporal, "time")
    to_space: isl.Map = _project_spacetime(
        spacetime, [not t for t in is_temporal], "space"
    )

    time_: isl.Set = to_time.range()
    most_recent_past: isl.Map = (
        isl.Map.lex_gt(time_.get_space())
        .intersect_domain(time_)
        .intersect_range(time_)
        .lexmax()
    )
    time_shift: isl.Map = to_time.apply_range(most_recent_past).apply_range(
        to_time.reverse()
    )
    # Going through time alone forgets the position in space.
    return time_shift.intersect(to_space.apply_range(to_space.reverse()))
