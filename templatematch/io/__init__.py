"""
Adapters for seismic data containers.

Converts obspy streams of continuous data and master-event templates into
the channel arrays and stacking offsets used by the core algorithms.
"""

from .streams import ChannelSet, align_streams, channel_key, position_to_time

__all__ = [
    'ChannelSet',
    'align_streams',
    'channel_key',
    'position_to_time',
]
