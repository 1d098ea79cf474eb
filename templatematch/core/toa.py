"""
Time-of-arrival estimation with sub-sample precision.

The integer maximum of the correlation near an expected position is refined
by fitting a parabola through it and its two neighbours. The estimate is
biased towards the integer sample and its accuracy decreases with
decreasing sampling frequency.
"""

import logging

import numpy as np

from .correlation import crosscorrelate
from .peaks import clip_window, argmax_between
from .validation import InvalidArgumentError, as_series, as_index, check_non_negative

logger = logging.getLogger(__name__)


def parabolic_refinement(y_left, y_peak, y_right):
    """
    Offset of the vertex of the parabola through three equally spaced samples.

    Returns 0.0 for a flat top (zero curvature) or non-finite samples.
    """
    denom = y_left - 2.0 * y_peak + y_right
    if not np.isfinite(denom) or denom == 0:
        return 0.0
    return float(0.5 * (y_left - y_right) / denom)


def estimatetoa(trace, waveform, center, left, tolerance, correlation=None):
    """
    Estimate the position, with sub-sample precision, and value of the
    maximum cross-correlation between ``trace`` and ``waveform`` near
    ``center``.

    The maximum is searched within ``tolerance`` samples of
    ``center - left`` in correlation coordinates, i.e. ``left`` is the
    number of samples by which the waveform window starts before the
    reference time ``center``. The position of the maximum is the time of
    arrival in sample units (true time divided by the sampling interval) of
    the waveform's first sample.

    Parameters
    ----------
    trace : array-like
        Continuous data
    waveform : array-like
        Template waveform
    center : int
        Expected reference sample in ``trace``
    left : int
        Samples between the waveform start and its reference sample
    tolerance : int
        Search radius in samples
    correlation : array-like, optional
        Precomputed ``crosscorrelate(trace, waveform)``. If omitted, only the
        part of the trace needed for the search window is correlated.

    Returns
    -------
    position : float
        Refined position of the correlation maximum
    value : float
        Correlation at the integer maximum (not the parabola vertex)
    """
    x = as_series(trace, 'trace')
    w = as_series(waveform, 'waveform')
    center = as_index(center, 'center')
    left = as_index(left, 'left')
    tolerance = check_non_negative(tolerance, 'tolerance')

    if w.size > x.size:
        raise InvalidArgumentError(f"waveform ({w.size} samples) is longer than trace ({x.size} samples)")
    n_cc = x.size - w.size + 1

    lo, hi = clip_window(center - left, tolerance, n_cc)

    if correlation is not None:
        cc = as_series(correlation, 'correlation')
        if cc.size != n_cc:
            raise InvalidArgumentError(
                f"correlation has {cc.size} samples, expected {n_cc} for this trace and waveform"
            )
        base = 0
    else:
        # one extra sample each side for the parabola
        base = max(lo - 1, 0)
        end = min(hi + 1, n_cc - 1)
        cc = crosscorrelate(x[base:end + w.size], w)

    idx = argmax_between(cc, lo - base, hi - base)
    value = float(cc[idx])

    delta = 0.0
    if 0 < idx < cc.size - 1:
        delta = parabolic_refinement(float(cc[idx - 1]), value, float(cc[idx + 1]))

    logger.debug("estimatetoa: window [%d, %d], max %.4f at %d, delta %.4f", lo, hi, value, base + idx, delta)
    return base + idx + delta, value
