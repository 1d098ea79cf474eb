"""
Relative magnitude with robust outlier rejection.

The amplitude of a detection on each channel is compared with the template
amplitude; channels whose ratio deviates strongly from the rest (MAD test)
are excluded before averaging.
"""

import logging

import numpy as np

from .validation import (
    InvalidArgumentError,
    as_series,
    as_index,
    check_same_length,
)

logger = logging.getLogger(__name__)


def mad_test(xs, r=3):
    """
    Flag elements of ``xs`` whose absolute deviation from the median is at
    least ``r`` times the median absolute deviation (MAD).

    If the MAD is zero nothing is flagged, unless ``r`` is zero in which case
    everything is. NaN elements are ignored by the statistics and never
    flagged.

    Parameters
    ----------
    xs : array-like
        Values to test
    r : float
        Threshold in units of MAD

    Returns
    -------
    flags : ndarray of bool

    Examples
    --------
    >>> mad_test([1, 2, 3, 100])
    array([False, False, False,  True])
    """
    xs = np.asarray(xs, dtype=float)
    if r < 0:
        raise InvalidArgumentError(f"r must be non-negative, got {r}")

    finite = ~np.isnan(xs)
    if not finite.any():
        return np.zeros(xs.shape, dtype=bool)

    m = np.median(xs[finite])
    dev = np.abs(xs - m)
    mad = np.median(dev[finite])

    if mad == 0:
        return np.full(xs.shape, r == 0) & finite

    with np.errstate(invalid='ignore'):
        return dev >= r * mad


def rms(x):
    """Root-mean-square amplitude."""
    x = np.asarray(x, dtype=float)
    return float(np.sqrt(np.mean(x * x)))


def magnitude(data, template, indices, outlier=mad_test, avg=np.mean):
    """
    Return the average relative magnitude of ``data`` with respect to
    ``template``.

    For every channel n the window of ``data[n]`` starting at ``indices[n]``
    with the length of ``template[n]`` is compared with the template through
    the ratio of their RMS amplitudes. Ratios for which ``outlier(ratios)``
    is True are excluded and the rest are combined with ``avg``.

    Parameters
    ----------
    data : sequence of array-like
        One series per channel
    template : sequence of array-like
        One template per channel
    indices : sequence of int
        Start of the detection window in each series
    outlier : callable
        Maps an array of ratios to a boolean array of the same shape
    avg : callable
        Maps an array of ratios to a scalar

    Returns
    -------
    magnitude : float
        NaN if no channel survives
    """
    n_channels = check_same_length(data=data, template=template, indices=indices)

    windows = []
    for ch in range(n_channels):
        series = as_series(data[ch], f'data[{ch}]')
        tpl = as_series(template[ch], f'template[{ch}]')
        start = as_index(indices[ch], f'indices[{ch}]')
        if start < 0 or start + tpl.size > series.size:
            raise InvalidArgumentError(
                f"window [{start}, {start + tpl.size}) of channel {ch} exceeds its {series.size} samples"
            )
        windows.append((series[start:start + tpl.size], tpl))

    ratios = np.empty(n_channels)
    with np.errstate(divide='ignore', invalid='ignore'):
        for ch, (window, tpl) in enumerate(windows):
            ratios[ch] = np.float64(rms(window)) / rms(tpl)

    # zero-amplitude templates give no usable ratio
    ratios = ratios[np.isfinite(ratios)]

    flags = np.asarray(outlier(ratios), dtype=bool)
    if flags.shape != ratios.shape:
        raise InvalidArgumentError(
            f"outlier function returned shape {flags.shape} for {ratios.shape[0]} ratios"
        )

    kept = ratios[~flags]
    if kept.size == 0:
        logger.warning("No channel left after outlier rejection (%d channels)", n_channels)
        return float('nan')

    logger.debug("magnitude: %d of %d channels kept", kept.size, n_channels)
    return float(avg(kept))
