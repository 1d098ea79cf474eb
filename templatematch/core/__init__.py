"""
Core algorithms for template matching on array data.

This module provides:
- Normalized cross-correlation and offset-aligned stacking
- Peak picking and running maximum
- Sub-sample time-of-arrival estimation
- Robust relative magnitude
"""

from .validation import InvalidArgumentError
from .correlation import (
    crosscorrelate,
    correlate_channels,
    correlatetemplate,
    stack,
    stacked_domain,
)
from .peaks import findpeaks, findmax_window, maxfilter
from .toa import estimatetoa, parabolic_refinement
from .magnitude import mad_test, magnitude, rms

__all__ = [
    'InvalidArgumentError',
    'crosscorrelate',
    'correlate_channels',
    'correlatetemplate',
    'stack',
    'stacked_domain',
    'findpeaks',
    'findmax_window',
    'maxfilter',
    'estimatetoa',
    'parabolic_refinement',
    'mad_test',
    'magnitude',
    'rms',
]
