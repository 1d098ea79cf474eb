"""
templatematch - Template Matching for array arrival-time estimation

Locates a known short waveform inside longer recordings by normalized
cross-correlation, with sub-sample timing, and combines the evidence of
the channels of a sensor array while rejecting outliers.

This package provides:
- Normalized cross-correlation and offset-aligned stacking
- Peak picking, windowed maxima and running maximum
- Sub-sample time-of-arrival estimation (parabolic refinement)
- MAD outlier test and robust relative magnitude
- An array detector combining the above, and an obspy stream adapter
"""

__version__ = "0.1.0"
__author__ = "templatematch Development Team"

from . import core
from . import io
from .core import (
    InvalidArgumentError,
    crosscorrelate,
    correlatetemplate,
    stack,
    findpeaks,
    findmax_window,
    maxfilter,
    estimatetoa,
    mad_test,
    magnitude,
)
from .config import MatchConfig, load_config
from .detector import TemplateMatcher

__all__ = [
    'core',
    'io',
    'InvalidArgumentError',
    'crosscorrelate',
    'correlatetemplate',
    'stack',
    'findpeaks',
    'findmax_window',
    'maxfilter',
    'estimatetoa',
    'mad_test',
    'magnitude',
    'MatchConfig',
    'load_config',
    'TemplateMatcher',
]
