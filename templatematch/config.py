"""
Detection settings for TemplateMatcher.

Settings can be given directly, read from a YAML file, or (for the worker
count) from the TEMPLATEMATCH_N_WORKERS environment variable.

Example YAML::

    threshold: 0.6
    distance: 50
    tolerance: 2
    toa-tolerance: 3
    n-workers: 4
"""

import os
import logging
from dataclasses import dataclass, fields, asdict
from typing import Optional

import yaml

from .core.validation import InvalidArgumentError, as_float_type, check_non_negative

logger = logging.getLogger(__name__)

N_WORKERS_ENV = 'TEMPLATEMATCH_N_WORKERS'


@dataclass
class MatchConfig:
    """Parameters of a TemplateMatcher run.

    Attributes
    ----------
    threshold : float
        Detection threshold on the stacked correlation
    distance : int
        Minimum spacing of detections in samples
    tolerance : int
        Per-channel misalignment allowed when stacking
    toa_tolerance : int
        Search radius for per-channel arrival refinement
    mad_r : float
        Outlier threshold for the magnitude, in units of MAD
    partial : bool
        Keep stack positions not covered by every channel
    element_type : str
        Floating dtype of the correlations
    n_workers : int or None
        Threads used to correlate channels; None defers to the environment
    """
    threshold: float = 0.5
    distance: int = 1
    tolerance: int = 0
    toa_tolerance: int = 2
    mad_r: float = 3.0
    partial: bool = False
    element_type: str = 'float64'
    n_workers: Optional[int] = None

    def __post_init__(self):
        self.threshold = float(self.threshold)
        self.distance = check_non_negative(self.distance, 'distance')
        self.tolerance = check_non_negative(self.tolerance, 'tolerance')
        self.toa_tolerance = check_non_negative(self.toa_tolerance, 'toa_tolerance')
        self.mad_r = float(self.mad_r)
        if self.mad_r < 0:
            raise InvalidArgumentError(f"mad_r must be non-negative, got {self.mad_r}")
        self.partial = bool(self.partial)
        as_float_type(self.element_type)
        if self.n_workers is not None:
            self.n_workers = check_non_negative(self.n_workers, 'n_workers')
            if self.n_workers < 1:
                raise InvalidArgumentError("n_workers must be at least 1")

    @classmethod
    def from_dict(cls, options):
        """Build a config from a mapping, accepting hyphenated keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in options.items():
            name = str(key).replace('-', '_')
            if name not in known:
                logger.warning(f"Ignoring unknown config option '{key}'")
                continue
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self):
        return asdict(self)


def load_config(path):
    """
    Load a MatchConfig from a YAML file.

    Parameters
    ----------
    path : str
        YAML file containing a mapping of options

    Returns
    -------
    config : MatchConfig
    """
    with open(path) as fh:
        cfg = yaml.safe_load(fh) or {}
    if not isinstance(cfg, dict):
        raise InvalidArgumentError(f"config file {path} must contain a mapping, got {type(cfg).__name__}")
    config = MatchConfig.from_dict(cfg)
    logger.info(f"Loaded config from {path}")
    return config


def resolve_n_workers(n_workers=None):
    """
    Return ``n_workers``, or the value of TEMPLATEMATCH_N_WORKERS when it is
    None. An unparsable environment value is ignored with a warning.
    """
    if n_workers is not None:
        return n_workers

    # read at call time so changes to the environment apply after import
    raw = os.getenv(N_WORKERS_ENV)
    if raw is None or raw.strip() == '':
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring {N_WORKERS_ENV}={raw!r}: not an integer")
        return None
    if value < 1:
        logger.warning(f"Ignoring {N_WORKERS_ENV}={raw!r}: must be at least 1")
        return None
    return value
