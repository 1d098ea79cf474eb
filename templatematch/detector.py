"""
Array template-matching detector.

Correlates every channel of an array with its template, stacks the
correlations with the template moveout, picks detections on the stack and
characterizes each detection with per-channel arrival times and a robust
relative magnitude.
"""

import logging
import functools

import numpy as np

from .config import MatchConfig, resolve_n_workers
from .core import (
    InvalidArgumentError,
    correlate_channels,
    estimatetoa,
    findpeaks,
    mad_test,
    magnitude,
    maxfilter,
    stack,
    stacked_domain,
)
from .core.validation import as_series, as_index, check_same_length

logger = logging.getLogger(__name__)

# weight of the nominal-offset stack when ranking samples of a tolerant stack
_TIE_BREAK = 1e-6


class TemplateMatcher:
    """
    Multi-channel template detector.

    Parameters
    ----------
    templates : sequence of array-like
        One template waveform per channel
    offsets : sequence of int
        Per-channel moveout in samples: the correlation index of channel n
        that lines up with position 0 of the shared axis
    config : MatchConfig, optional
        Detection settings. Defaults to ``MatchConfig()``.
    """

    def __init__(self, templates, offsets, config=None):
        check_same_length(templates=templates, offsets=offsets)
        self.templates = [as_series(t, f'templates[{n}]') for n, t in enumerate(templates)]
        self.offsets = [as_index(o, f'offsets[{n}]') for n, o in enumerate(offsets)]
        self.config = config if config is not None else MatchConfig()

        logger.info(f"Initialized matcher with {self.n_channels} channels "
                    f"(threshold={self.config.threshold}, tolerance={self.config.tolerance})")

    @property
    def n_channels(self):
        return len(self.templates)

    def _check_data(self, data):
        if len(data) != self.n_channels:
            raise InvalidArgumentError(f"expected {self.n_channels} channels of data, got {len(data)}")

    def correlate(self, data):
        """Return the per-channel correlations of ``data`` with the templates."""
        self._check_data(data)
        return correlate_channels(
            data, self.templates,
            element_type=self.config.element_type,
            n_workers=resolve_n_workers(self.config.n_workers),
        )

    def stacked(self, data, correlations=None):
        """
        Stack the channel correlations.

        Returns
        -------
        start : int
            Shared-axis position of the first stacked sample
        stacked : ndarray
            Stacked correlation
        """
        if correlations is None:
            correlations = self.correlate(data)

        if self.config.tolerance > 0:
            correlations = [maxfilter(c, self.config.tolerance) for c in correlations]

        start, _ = stacked_domain([c.size for c in correlations], self.offsets, partial=self.config.partial)
        return start, stack(correlations, self.offsets, partial=self.config.partial)

    def detect(self, data):
        """
        Detect template occurrences in ``data``.

        Parameters
        ----------
        data : sequence of array-like
            One series per channel, parallel to the templates

        Returns
        -------
        detections : list of dict
            One dict per detection with keys:
            'position' (shared-axis position of the stack peak),
            'correlation' (stacked correlation at the peak),
            'n_channels' (channels contributing a finite value at the peak),
            'toas' (refined per-channel arrival, correlation index units),
            'channel_correlations' (per-channel correlation at the arrival),
            'magnitude' (robust average amplitude ratio to the templates)
        """
        correlations = self.correlate(data)
        start, stacked = self.stacked(data, correlations)

        ranking = stacked
        if self.config.tolerance > 0:
            # the running maximum flattens peaks into plateaus; order plateau
            # samples by the stack at the nominal offsets
            nominal = stack(correlations, self.offsets, partial=self.config.partial)
            ranking = stacked + _TIE_BREAK * np.where(np.isnan(nominal), 0.0, nominal)

        indices, _ = findpeaks(ranking, self.config.threshold, self.config.distance)
        # the tie-break may lift a sample of the stack over the threshold
        indices = indices[stacked[indices] > self.config.threshold]
        heights = stacked[indices]
        if len(indices) == 0:
            logger.info("No detections above threshold %.3f", self.config.threshold)
            return []

        # the stack may have picked a channel up to `tolerance` samples off
        radius = max(self.config.toa_tolerance, self.config.tolerance)
        outlier = functools.partial(mad_test, r=self.config.mad_r)

        detections = []
        for idx, height in zip(indices, heights):
            position = start + int(idx)

            toas = np.empty(self.n_channels)
            values = np.empty(self.n_channels)
            picks = []
            for ch, (series, tpl, cc, off) in enumerate(zip(data, self.templates, correlations, self.offsets)):
                toas[ch], values[ch] = estimatetoa(series, tpl, position + off, 0, radius, correlation=cc)
                picks.append(int(np.clip(np.rint(toas[ch]), 0, cc.size - 1)))

            detection = {
                'position': position,
                'correlation': float(height),
                'n_channels': self._coverage(correlations, position),
                'toas': toas,
                'channel_correlations': values,
                'magnitude': magnitude(data, self.templates, picks, outlier=outlier),
            }
            detections.append(detection)

        logger.info(f"Found {len(detections)} detections")
        return detections

    def _coverage(self, correlations, position):
        count = 0
        for cc, off in zip(correlations, self.offsets):
            j = position + off
            if 0 <= j < cc.size and np.isfinite(cc[j]):
                count += 1
        return count
