"""
Temporal and spatial reuse of every logical buffer occupancy.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import islpy as isl

from looptree.model._looptree.reuse.isl.mapping_to_isl.types import (
    Fill,
    LogicalBuffer,
    Occupancy,
)
from looptree.model._looptree.reuse.isl.spatial import (
    Reads,
    SimpleLinkTransferModel,
    TransferInfo,
    TransferModel,
    Transfers,
)
from looptree.model._looptree.reuse.isl.temporal import (
    TemporalReuse,
    analyze_temporal_reuse,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReuseAnalysisOptions:
    count_hops: bool = False
    """Whether link transfers report hop counts."""
    exploit_temporal_reuse: bool = True
    """Whether data resident from the previous time step is refilled."""
    multi_loop_reuse: bool = True
    """Whether data stays resident across steps of loops above the innermost."""


@dataclass(frozen=True)
class BufferStats:
    effective_occupancy: Occupancy
    fill: Fill
    parent_reads: Reads
    link_transfer: Transfers
    hops: Optional[isl.PwQPolynomial] = None


@dataclass
class ReuseAnalysisOutput:
    buf_to_stats: dict[LogicalBuffer, BufferStats] = field(default_factory=dict)


def reuse_analysis(
    occupancies: dict[LogicalBuffer, Occupancy],
    options: Optional[ReuseAnalysisOptions] = None,
    transfer_model: Optional[TransferModel] = None,
) -> ReuseAnalysisOutput:
    """
    Splits the data each logical buffer holds into what it keeps from earlier
    time steps, what peers pass to it and what its parent must send.

    Parameters
    ----------
    occupancies:
        The occupancy of each logical buffer.
    options:
        Which kinds of reuse to exploit.
    transfer_model:
        The model of peer-to-peer transfers. Defaults to a
        :class:`SimpleLinkTransferModel`.

    Returns
    -------
    The statistics of each logical buffer.
    """
    if options is None:
        options = ReuseAnalysisOptions()
    if transfer_model is None:
        transfer_model = SimpleLinkTransferModel(count_hops=options.count_hops)

    output = ReuseAnalysisOutput()
    for lbuf, occupancy in occupancies.items():
        temporal: TemporalReuse = analyze_temporal_reuse(
            occupancy, options.exploit_temporal_reuse, options.multi_loop_reuse
        )
        transfers: TransferInfo = transfer_model.apply(
            lbuf.buffer, temporal.fill, temporal.effective_occupancy
        )
        output.buf_to_stats[lbuf] = BufferStats(
            effective_occupancy=temporal.effective_occupancy,
            fill=temporal.fill,
            parent_reads=transfers.parent_reads,
            link_transfer=transfers.fulfilled_fill,
            hops=transfers.hops,
        )
        logger.debug("Analyzed reuse of %s", lbuf)
    return output
