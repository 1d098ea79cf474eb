"""
Peak picking on correlation traces.

Provides:
- Local maxima above a threshold with minimum spacing (findpeaks)
- Maximum inside a window around an expected index (findmax_window)
- Running maximum over a symmetric window (maxfilter)
"""

import numpy as np
import logging
from scipy.ndimage import maximum_filter1d, minimum_filter1d

from .validation import as_series, as_index, check_non_negative

logger = logging.getLogger(__name__)


def findpeaks(signal, threshold, distance):
    """
    Find local maxima of ``signal`` above ``threshold`` and at least
    ``distance`` samples apart.

    Candidates are strict interior local maxima (greater than both
    neighbours). Peaks closer than ``distance`` are resolved by visiting the
    peaks from highest to lowest and removing the neighbours of every
    surviving peak, as scipy.signal.find_peaks does. On exact height ties
    the peak with the larger index wins, so the earlier one is removed.

    Parameters
    ----------
    signal : array-like
        Input signal (usually a stacked correlation)
    threshold : float
        Peaks must be strictly greater than this value
    distance : int
        Minimum spacing in samples. 0 and 1 disable the spacing check.

    Returns
    -------
    indices : ndarray of int
        Peak indices in ascending order
    heights : ndarray
        ``signal`` at ``indices``

    Examples
    --------
    >>> x = np.abs(np.sin(np.linspace(0, 2 * np.pi, 201)))
    >>> findpeaks(x, 0.5, 0)
    (array([ 50, 150]), array([1., 1.]))
    """
    x = as_series(signal, 'signal')
    distance = check_non_negative(distance, 'distance')

    if x.size < 3:
        return np.zeros(0, dtype=np.intp), x[:0].copy()

    mid = x[1:-1]
    # NaN compares False, so NaN samples and their neighbours never qualify
    with np.errstate(invalid='ignore'):
        is_peak = (mid > x[:-2]) & (mid > x[2:]) & (mid > threshold)
    indices = np.flatnonzero(is_peak) + 1

    if distance > 1 and indices.size > 1:
        keep = _select_by_distance(indices, x[indices], distance)
        indices = indices[keep]

    logger.debug("findpeaks: %d peaks above %s (distance=%d)", indices.size, threshold, distance)
    return indices, x[indices].copy()


def _select_by_distance(indices, heights, distance):
    """Return a keep-mask so that surviving peaks are >= distance apart."""
    n = indices.size
    keep = np.ones(n, dtype=bool)

    # highest first, later index first on equal heights
    priority = np.lexsort((indices, heights))[::-1]

    for j in priority:
        if not keep[j]:
            continue

        k = j - 1
        while k >= 0 and indices[j] - indices[k] < distance:
            keep[k] = False
            k -= 1

        k = j + 1
        while k < n and indices[k] - indices[j] < distance:
            keep[k] = False
            k += 1

    return keep


def clip_window(index, radius, size):
    """Bounds (inclusive) of ``[index - radius, index + radius]`` clipped into ``[0, size - 1]``."""
    lo = min(max(index - radius, 0), size - 1)
    hi = max(min(index + radius, size - 1), 0)
    return lo, hi


def argmax_between(x, lo, hi):
    """Index of the first maximum of ``x[lo:hi + 1]`` ignoring NaN, or ``lo`` if all NaN."""
    window = x[lo:hi + 1]
    if np.issubdtype(window.dtype, np.floating):
        valid = ~np.isnan(window)
        if not valid.any():
            return lo
        if not valid.all():
            return lo + int(np.nanargmax(window))
    return lo + int(np.argmax(window))


def findmax_window(correlation, index, tolerance):
    """
    Return the maximum of ``correlation`` within ``tolerance`` samples of
    ``index`` and its position.

    The window is clipped to the valid index range, so an out-of-range
    ``index`` is not an error. NaN values are skipped.

    Parameters
    ----------
    correlation : array-like
        Correlation trace
    index : int
        Window center
    tolerance : int
        Window radius in samples

    Returns
    -------
    value : float
        Maximum value in the window (NaN if the window holds only NaN)
    index : int
        Absolute index of ``value``

    Examples
    --------
    >>> x = np.abs(np.sin(np.linspace(0, 4 * np.pi, 401)))
    >>> findmax_window(x, 49, 5)
    (1.0, 50)
    """
    c = as_series(correlation, 'correlation')
    index = as_index(index, 'index')
    tolerance = check_non_negative(tolerance, 'tolerance')

    lo, hi = clip_window(index, tolerance, c.size)
    best = argmax_between(c, lo, hi)
    return c[best].item(), best


def maxfilter(x, tolerance):
    """
    Running maximum with a window of ``2 * tolerance + 1`` samples.

    Element n of the result is the maximum of ``x`` over
    ``[n - tolerance, n + tolerance]`` clipped to the array. The filter is
    scipy.ndimage.maximum_filter1d, whose monotonic-wedge algorithm keeps the
    cost linear in ``len(x)`` regardless of ``tolerance``.

    NaN samples are ignored; windows that contain only NaN give NaN.

    Parameters
    ----------
    x : array-like
        Input signal
    tolerance : int
        Window radius in samples. 0 returns a copy of ``x``.

    Returns
    -------
    filtered : ndarray
        Same length and dtype as ``x``

    Examples
    --------
    >>> maxfilter(np.array([0.0, 2.0, 1.0, 0.0, 3.0]), 1)
    array([2., 2., 2., 3., 3.])
    """
    x = as_series(x, 'x')
    tolerance = check_non_negative(tolerance, 'tolerance')

    # a radius beyond the array changes nothing
    radius = min(tolerance, x.size - 1)
    if radius == 0:
        return x.copy()

    size = 2 * radius + 1
    nan_mask = np.isnan(x) if np.issubdtype(x.dtype, np.floating) else None
    if nan_mask is None or not nan_mask.any():
        return maximum_filter1d(x, size=size, mode='nearest')

    filtered = maximum_filter1d(np.where(nan_mask, -np.inf, x), size=size, mode='nearest')
    all_nan = minimum_filter1d(nan_mask.astype(np.uint8), size=size, mode='nearest') == 1
    filtered[all_nan] = np.nan
    return filtered
