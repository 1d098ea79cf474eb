"""
Adapter between obspy streams and the channel arrays used by the core.

Traces are paired with templates by station and channel code. The template
moveout and the start times of the data traces are turned into integer
stacking offsets, so that position 0 of the shared axis is the start time
of the earliest data trace shifted to the earliest template start.
"""

import logging
from dataclasses import dataclass
from typing import List

import numpy as np
from obspy import UTCDateTime

from ..core.validation import InvalidArgumentError

logger = logging.getLogger(__name__)


def channel_key(trace):
    """Return the ``STATION.CHANNEL`` key of a trace."""
    return f"{trace.stats.station}.{trace.stats.channel}"


@dataclass
class ChannelSet:
    """Channel arrays ready for correlatetemplate / TemplateMatcher."""
    keys: List[str]
    data: List[np.ndarray]
    templates: List[np.ndarray]
    offsets: List[int]
    sampling_rate: float
    reference_time: UTCDateTime


def align_streams(stream, template_stream):
    """
    Pair data traces with template traces and compute stacking offsets.

    Parameters
    ----------
    stream : obspy.Stream
        Continuous data, one trace per channel
    template_stream : obspy.Stream
        Template waveforms cut from a master event, one trace per channel

    Returns
    -------
    channels : ChannelSet
    """
    pairs = []
    for tpl in template_stream:
        key = channel_key(tpl)
        matches = stream.select(station=tpl.stats.station, channel=tpl.stats.channel)

        if len(matches) == 0:
            logger.warning(f"{key}: no data trace for template, skipping")
            continue
        if len(matches) > 1:
            logger.warning(f"{key}: {len(matches)} data traces, using the first (merge the stream first)")

        data_tr = matches[0]
        if len(data_tr.data) < len(tpl.data):
            logger.warning(f"{key}: data shorter than template ({len(data_tr.data)} < {len(tpl.data)}), skipping")
            continue
        pairs.append((key, data_tr, tpl))

    if len(pairs) == 0:
        raise InvalidArgumentError("no data trace matches any template")

    rates = {tr.stats.sampling_rate for _, tr, _ in pairs} | {tpl.stats.sampling_rate for _, _, tpl in pairs}
    if len(rates) != 1:
        raise InvalidArgumentError(f"traces and templates must share one sampling rate, got {sorted(rates)}")
    fs = rates.pop()

    template_ref = min(tpl.stats.starttime for _, _, tpl in pairs)
    data_ref = min(tr.stats.starttime for _, tr, _ in pairs)

    offsets = []
    for key, tr, tpl in pairs:
        moveout = tpl.stats.starttime - template_ref
        lag = tr.stats.starttime - data_ref
        offsets.append(int(round((moveout - lag) * fs)))

    logger.info(f"Aligned {len(pairs)} channels at {fs} Hz, offsets {offsets}")

    return ChannelSet(
        keys=[key for key, _, _ in pairs],
        data=[np.asarray(tr.data) for _, tr, _ in pairs],
        templates=[np.asarray(tpl.data) for _, _, tpl in pairs],
        offsets=offsets,
        sampling_rate=fs,
        reference_time=data_ref,
    )


def position_to_time(channels, position):
    """
    Convert a shared-axis position (possibly fractional) to an absolute time.

    The time returned is that of the earliest template start for an event
    detected at ``position``.
    """
    return channels.reference_time + float(position) / channels.sampling_rate
