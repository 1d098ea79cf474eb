"""
Argument checks shared by the numeric core.

Every public operation validates its inputs here before doing any work, so
a bad call never returns a partial result.
"""

import operator

import numpy as np


class InvalidArgumentError(ValueError):
    """Raised when an operation receives arguments it cannot work with."""


def as_series(x, name='series'):
    """Return ``x`` as a non-empty 1-D ndarray (no copy when possible)."""
    arr = np.asarray(x)
    if arr.ndim != 1:
        raise InvalidArgumentError(f"{name} must be 1-D, got {arr.ndim} dimensions")
    if arr.size == 0:
        raise InvalidArgumentError(f"{name} must not be empty")
    if not np.issubdtype(arr.dtype, np.number):
        raise InvalidArgumentError(f"{name} must be numeric, got dtype {arr.dtype}")
    return arr


def as_float_type(element_type):
    """Resolve ``element_type`` to a numpy floating dtype."""
    try:
        dtype = np.dtype(element_type)
    except TypeError as e:
        raise InvalidArgumentError(f"invalid element type {element_type!r}: {e}") from e
    if not np.issubdtype(dtype, np.floating):
        raise InvalidArgumentError(f"element type must be floating point, got {dtype}")
    return dtype


def as_index(value, name='index'):
    """Return ``value`` as a Python int, rejecting non-integral numbers."""
    if isinstance(value, (float, np.floating)):
        if not float(value).is_integer():
            raise InvalidArgumentError(f"{name} must be an integer, got {value!r}")
        return int(value)
    try:
        return operator.index(value)
    except TypeError as e:
        raise InvalidArgumentError(f"{name} must be an integer, got {value!r}") from e


def check_non_negative(value, name):
    """Integer check for tolerances, distances and radii."""
    value = as_index(value, name)
    if value < 0:
        raise InvalidArgumentError(f"{name} must be non-negative, got {value}")
    return value


def check_same_length(**collections):
    """Raise unless all keyword collections have the same, non-zero length."""
    lengths = {name: len(c) for name, c in collections.items()}
    if len(set(lengths.values())) > 1:
        detail = ', '.join(f"{k}={v}" for k, v in lengths.items())
        raise InvalidArgumentError(f"collections differ in length ({detail})")
    if any(n == 0 for n in lengths.values()):
        raise InvalidArgumentError(f"collections must not be empty: {', '.join(lengths)}")
    return next(iter(lengths.values()))
