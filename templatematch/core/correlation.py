"""
Normalized cross-correlation and array stacking.

Provides:
- Sliding Pearson correlation of a template against a series
- Per-channel correlation of an array, optionally on a thread pool
- Offset-aligned averaging of channel correlations (stacking)
- Template correlation with a per-channel misalignment tolerance
"""

import logging
import functools
from multiprocessing.pool import ThreadPool

import numpy as np
from scipy.signal import correlate

from .peaks import maxfilter
from .validation import (
    InvalidArgumentError,
    as_series,
    as_float_type,
    as_index,
    check_non_negative,
    check_same_length,
)

logger = logging.getLogger(__name__)


def crosscorrelate(series, template, element_type=np.float64, normalize_template=True,
                   method='auto'):
    """
    Return the normalized cross-correlation between ``series`` and ``template``.

    For a series of n samples and a template of k samples the result has
    n - k + 1 elements. Element l is the Pearson correlation coefficient
    between ``series[l:l + k]`` and ``template``:

        chi_l = sum_i (x_{l+i} - mu_x^(l)) (y_i - mu_y) / (k sigma_x^(l) sigma_y)

    Window means and variances are rolling statistics (see
    ``_rolling_moments``) whose cost is linear in n and whose accuracy does
    not depend on the level of the series, so quiet windows next to a large
    step or drift keep their precision. Windows where the series is
    constant, or a constant template, give NaN.

    Parameters
    ----------
    series : array-like
        Data to search, integer or floating point
    template : array-like
        Waveform to look for, at most as long as ``series``
    element_type : numpy floating dtype
        dtype of the returned correlation
    normalize_template : bool
        If False, ``template`` is taken to have mean 0 and standard deviation
        1 already, which lets callers normalize once and reuse it.
    method : {'auto', 'direct', 'fft'}
        Passed to scipy.signal.correlate for the dot-product term.

    Returns
    -------
    cc : ndarray
        Correlation coefficients in [-1, 1], NaN at degenerate windows

    Examples
    --------
    >>> crosscorrelate(np.sin(np.arange(9) * np.pi / 4), [1, 1 + np.sqrt(2), 1]).round(4)
    array([ 0.2326,  1.    ,  0.2326,  0.    , -0.2326, -1.    , -0.2326])
    """
    x = as_series(series, 'series')
    y = as_series(template, 'template')
    dtype = as_float_type(element_type)

    n, k = x.size, y.size
    if k > n:
        raise InvalidArgumentError(f"template ({k} samples) is longer than series ({n} samples)")

    work = np.promote_types(dtype, np.float64)
    x = x.astype(work, copy=False)
    y = y.astype(work, copy=False)

    mean_x, var_x = _rolling_moments(x, k)

    # removing the global mean keeps the dot products small
    x_mean = x.mean()
    xc = x - x_mean

    if normalize_template:
        y = y - y.mean()
        sigma_y = np.sqrt(np.mean(y * y))
    else:
        sigma_y = 1.0

    numerator = correlate(xc, y, mode='valid', method=method)
    if not normalize_template:
        # the window mean only cancels for a zero-sum template
        numerator = numerator - (mean_x - x_mean) * y.sum()

    with np.errstate(divide='ignore', invalid='ignore'):
        cc = numerator / (k * np.sqrt(var_x) * sigma_y)

    if sigma_y == 0:
        cc[:] = np.nan
    else:
        cc[_constant_windows(x, k)] = np.nan

    np.clip(cc, -1.0, 1.0, out=cc)
    return cc.astype(dtype, copy=False)


def _block_moments(blocks):
    """
    Running count, mean and sum of squared deviations (M2) along each row.

    Sums are taken relative to the first sample of the row, so a prefix of
    nearly equal samples is accumulated without cancellation, and a prefix
    that crosses a jump has an M2 as large as the jump.
    """
    ref = blocks[:, :1]
    d = blocks - ref
    s1 = np.cumsum(d, axis=1)
    s2 = np.cumsum(d * d, axis=1)
    count = np.arange(1, blocks.shape[1] + 1)
    mean = ref + s1 / count
    m2 = np.maximum(s2 - s1 * s1 / count, 0.0)
    return mean.ravel(), m2.ravel()


def _rolling_moments(x, k):
    """
    Mean and population variance of every window ``x[l:l + k]``.

    The series is cut into blocks of k samples. A window is either one whole
    block or the tail of block b followed by the head of block b + 1; tail
    and head moments are accumulated inside their blocks and merged with
    the pairwise update of Chan et al. All merged terms are non-negative,
    so no window loses precision to samples outside it.
    """
    n = x.size
    n_blocks = -(-n // k)
    padded = np.concatenate((x, np.full(n_blocks * k - n, x[-1])))
    blocks = padded.reshape(n_blocks, k)

    head_mean, head_m2 = _block_moments(blocks)
    tail_mean, tail_m2 = _block_moments(blocks[:, ::-1])
    tail_mean = tail_mean.reshape(n_blocks, k)[:, ::-1].ravel()
    tail_m2 = tail_m2.reshape(n_blocks, k)[:, ::-1].ravel()

    starts = np.arange(n - k + 1)
    n_head = starts % k
    n_tail = k - n_head
    last = starts + k - 1

    mean_a = tail_mean[starts]
    mean_b = head_mean[last]
    # a window that starts on a block boundary is the whole block (tail only)
    m2_b = np.where(n_head > 0, head_m2[last], 0.0)
    delta = mean_b - mean_a

    mean = mean_a + delta * (n_head / k)
    m2 = tail_m2[starts] + m2_b + delta * delta * (n_tail * n_head / k)
    return mean, m2 / k


def _constant_windows(x, k):
    """Mask of windows of length k in which every sample is equal."""
    changes = np.concatenate(([0], np.cumsum(x[1:] != x[:-1])))
    return (changes[k - 1:] - changes[:x.size - k + 1]) == 0


def correlate_channels(data, template, element_type=np.float64, n_workers=None):
    """
    Cross-correlate every channel of ``data`` with its template.

    Parameters
    ----------
    data : sequence of array-like
        One series per channel
    template : sequence of array-like
        One template per channel, parallel to ``data``
    element_type : numpy floating dtype
        dtype of the correlations
    n_workers : int, optional
        Number of worker threads. None or 1 runs sequentially.

    Returns
    -------
    correlations : list of ndarray
        One correlation per channel, in channel order
    """
    n_channels = check_same_length(data=data, template=template)
    dtype = as_float_type(element_type)

    for ch in range(n_channels):
        series = as_series(data[ch], f'data[{ch}]')
        tpl = as_series(template[ch], f'template[{ch}]')
        if tpl.size > series.size:
            raise InvalidArgumentError(
                f"template[{ch}] ({tpl.size} samples) is longer than data[{ch}] ({series.size} samples)"
            )

    if n_workers is not None:
        n_workers = as_index(n_workers, 'n_workers')
        if n_workers < 1:
            raise InvalidArgumentError(f"n_workers must be at least 1, got {n_workers}")

    jobs = list(zip(data, template))
    correlate_func = functools.partial(crosscorrelate, element_type=dtype)

    if n_workers is None or n_workers == 1 or n_channels == 1:
        return [correlate_func(s, t) for s, t in jobs]

    n_threads = min(n_workers, n_channels)
    logger.debug("Correlating %d channels on %d threads", n_channels, n_threads)
    with ThreadPool(processes=n_threads) as pool:
        # starmap keeps channel order whatever the completion order
        return pool.starmap(correlate_func, jobs)


def stacked_domain(lengths, offsets, partial=False):
    """
    Shared-axis positions covered by a stack.

    Channel n covers positions ``-offsets[n]`` through
    ``lengths[n] - 1 - offsets[n]``.

    Returns
    -------
    start, stop : int
        First position and one past the last. By default the intersection
        of the channel ranges (``stop == start`` when it is empty); with
        ``partial=True`` their union.
    """
    starts = [-o for o in offsets]
    stops = [length - o for length, o in zip(lengths, offsets)]
    if partial:
        return min(starts), max(stops)
    start, stop = max(starts), min(stops)
    return start, max(start, stop)


def stack(correlations, offsets, partial=False):
    """
    Return the average cross-correlation after aligning ``correlations``.

    Channel n is shifted by ``offsets[n]``: position i of the stack averages
    ``correlations[n][i + offsets[n]]`` over the channels. Position 0 of the
    returned array is shared-axis position ``stacked_domain(...)[0]``.

    NaN values are skipped; a position without any finite value is NaN.

    Parameters
    ----------
    correlations : sequence of array-like
        Per-channel correlations
    offsets : sequence of int
        Per-channel alignment offsets in samples
    partial : bool
        If False (default), keep only positions covered by every channel.
        If True, keep every position covered by at least one channel and
        average over the channels available there.

    Returns
    -------
    stacked : ndarray
        Averaged correlation

    Examples
    --------
    >>> stack([[0, 1.0, 0, 0], [0, 0, 1.0, 0]], [1, 2])
    array([0., 1., 0.])
    """
    check_same_length(correlations=correlations, offsets=offsets)
    series = [as_series(c, f'correlations[{n}]') for n, c in enumerate(correlations)]
    offsets = [as_index(o, f'offsets[{n}]') for n, o in enumerate(offsets)]

    dtype = np.result_type(*series)
    if not np.issubdtype(dtype, np.floating):
        dtype = np.dtype(np.float64)

    start, stop = stacked_domain([s.size for s in series], offsets, partial=partial)
    size = stop - start
    if size == 0:
        logger.warning("Channel correlations do not overlap with offsets %s; stack is empty", offsets)
        return np.zeros(0, dtype=dtype)

    total = np.zeros(size, dtype=np.promote_types(dtype, np.float64))
    count = np.zeros(size, dtype=np.intp)

    for s, off in zip(series, offsets):
        lo = max(start, -off)
        hi = min(stop, s.size - off)
        if hi <= lo:
            continue
        segment = s[lo + off:hi + off]
        finite = ~np.isnan(segment)
        total[lo - start:hi - start] += np.where(finite, segment, 0.0)
        count[lo - start:hi - start] += finite

    with np.errstate(divide='ignore', invalid='ignore'):
        stacked = total / count

    return stacked.astype(dtype, copy=False)


def correlatetemplate(data, template, offsets, tolerance, element_type=np.float64,
                      n_workers=None, partial=False):
    """
    Return the stacked cross-correlation between ``data`` and ``template``.

    Each channel is correlated with its template, the correlations are
    aligned with ``offsets`` and averaged. If ``tolerance`` is not zero each
    channel may be misplaced by up to ``tolerance`` samples; the result is
    the average of the largest correlation compatible with that
    misplacement. Because the average separates into independent channel
    terms, the best joint choice of shifts at every position is the
    per-channel running maximum, which is exact rather than greedy.

    Parameters
    ----------
    data : sequence of array-like
        One series per channel
    template : sequence of array-like
        One template per channel
    offsets : sequence of int
        Nominal alignment offsets (see ``stack``)
    tolerance : int
        Allowed misplacement in samples
    element_type : numpy floating dtype
        dtype of the correlations
    n_workers : int, optional
        Worker threads for the per-channel correlations
    partial : bool
        Passed to ``stack``

    Returns
    -------
    stacked : ndarray
        Stacked correlation
    """
    check_same_length(data=data, template=template, offsets=offsets)
    tolerance = check_non_negative(tolerance, 'tolerance')

    correlations = correlate_channels(data, template, element_type=element_type, n_workers=n_workers)
    if tolerance > 0:
        correlations = [maxfilter(c, tolerance) for c in correlations]

    return stack(correlations, offsets, partial=partial)
