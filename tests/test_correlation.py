import numpy as np
import pytest

from templatematch.core import (
    InvalidArgumentError,
    crosscorrelate,
    correlate_channels,
    correlatetemplate,
    stack,
    stacked_domain,
)


def _naive_crosscorrelate(series, template):
    x = np.asarray(series, dtype=float)
    y = np.asarray(template, dtype=float)
    k = y.size
    out = np.empty(x.size - k + 1)
    for l in range(out.size):
        w = x[l:l + k]
        out[l] = np.sum((w - w.mean()) * (y - y.mean())) / (k * w.std() * y.std())
    return out


def _make_array(n_channels=3, n_samples=400, k=40, event=150, moveout=(0, 7, 13), seed=0):
    rng = np.random.default_rng(seed)
    t = np.arange(k)
    wavelet = np.sin(2 * np.pi * t / 10.0) * np.exp(-((t - k / 2) / 8.0) ** 2)
    data, templates = [], []
    for ch in range(n_channels):
        trace = 0.05 * rng.standard_normal(n_samples)
        trace[event + moveout[ch]:event + moveout[ch] + k] += wavelet * (ch + 1)
        data.append(trace)
        templates.append(wavelet * (ch + 1))
    return data, templates, list(moveout)


def test_documented_example():
    x = np.sin(np.arange(9) * 0.25 * np.pi)
    cc = crosscorrelate(x, [1, 1 + np.sqrt(2), 1])
    expected = [0.23258781949447394, 1.0, 0.23258781949447402, 0.0,
                -0.23258781949447394, -1.0, -0.23258781949447394]
    np.testing.assert_allclose(cc, expected, atol=1e-12)


def test_length_and_bounds():
    rng = np.random.default_rng(1)
    x = rng.standard_normal(257)
    for k in (2, 5, 64, 257):
        cc = crosscorrelate(x, x[:k] + 0.1 * rng.standard_normal(k))
        assert cc.shape == (257 - k + 1,)
        finite = cc[~np.isnan(cc)]
        assert np.all(finite <= 1.0) and np.all(finite >= -1.0)


def test_self_match_is_one():
    x = np.random.default_rng(2).standard_normal(50)
    cc = crosscorrelate(x, x)
    assert cc.shape == (1,)
    assert cc[0] == pytest.approx(1.0, abs=1e-12)


def test_matches_naive_computation():
    rng = np.random.default_rng(3)
    x = rng.standard_normal(300) + 1000.0
    y = rng.standard_normal(25)
    np.testing.assert_allclose(crosscorrelate(x, y), _naive_crosscorrelate(x, y), atol=1e-9)
    np.testing.assert_allclose(crosscorrelate(x, y, method='direct'), _naive_crosscorrelate(x, y), atol=1e-9)


def test_quiet_windows_after_level_step():
    rng = np.random.default_rng(11)
    y = rng.standard_normal(40)
    # a tiny event on top of a large DC step
    x = np.concatenate([1e-3 * rng.standard_normal(600), 1e6 + 1e-3 * rng.standard_normal(600)])
    x[900:940] += 1e-3 * y

    cc = crosscorrelate(x, y, method='direct')
    expected = _naive_crosscorrelate(x, y)
    np.testing.assert_allclose(cc, expected, atol=1e-5)
    assert cc[900] > 0.5


def test_drifting_series_matches_naive_computation():
    rng = np.random.default_rng(12)
    n = 2000
    x = np.linspace(0.0, 1e5, n) + rng.standard_normal(n)
    x[1200:1200 + 30] += 5.0 * np.sin(np.arange(30))
    y = np.sin(np.arange(30))
    np.testing.assert_allclose(crosscorrelate(x, y), _naive_crosscorrelate(x, y), atol=1e-7)


def test_integer_input_and_element_type():
    x = np.array([0, 3, 1, 4, 1, 5, 9, 2, 6], dtype=np.int32)
    y = np.array([1, 4, 1], dtype=np.int64)
    cc = crosscorrelate(x, y, element_type=np.float32)
    assert cc.dtype == np.float32
    np.testing.assert_allclose(cc, _naive_crosscorrelate(x, y), atol=1e-6)


def test_prenormalized_template():
    rng = np.random.default_rng(4)
    x = rng.standard_normal(200)
    y = rng.standard_normal(30)
    yn = (y - y.mean()) / y.std()
    np.testing.assert_allclose(crosscorrelate(x, yn, normalize_template=False),
                               crosscorrelate(x, y), atol=1e-12)


def test_degenerate_windows_are_nan():
    x = np.concatenate([np.full(10, 0.1), np.sin(np.arange(20))])
    cc = crosscorrelate(x, [1.0, 2.0, 0.5])
    assert np.all(np.isnan(cc[:8]))
    assert np.all(np.isfinite(cc[8:]))

    assert np.all(np.isnan(crosscorrelate(np.arange(10.0), np.ones(4))))


def test_template_longer_than_series():
    with pytest.raises(InvalidArgumentError):
        crosscorrelate([1.0, 2.0], [1.0, 2.0, 3.0])


def test_non_float_element_type_rejected():
    with pytest.raises(InvalidArgumentError):
        crosscorrelate([1.0, 2.0, 3.0], [1.0, 2.0], element_type=np.int64)


def test_stack_documented_example():
    out = stack([[0, 1.0, 0, 0], [0, 0, 1.0, 0]], [1, 2])
    np.testing.assert_array_equal(out, [0.0, 1.0, 0.0])
    assert stacked_domain([4, 4], [1, 2]) == (-1, 2)


def test_stack_partial_coverage():
    out = stack([[1.0, 2.0, 3.0], [10.0, 20.0]], [0, -2], partial=True)
    # channel 0 covers 0..2, channel 1 covers 2..3
    np.testing.assert_allclose(out, [1.0, 2.0, 6.5, 20.0])
    assert stacked_domain([3, 2], [0, -2], partial=True) == (0, 4)


def test_stack_skips_nan():
    out = stack([[np.nan, 0.5, np.nan], [0.3, 0.1, np.nan]], [0, 0])
    np.testing.assert_allclose(out[:2], [0.3, 0.3])
    assert np.isnan(out[2])


def test_stack_empty_intersection():
    out = stack([[1.0, 2.0], [3.0, 4.0]], [0, 5])
    assert out.size == 0


def test_stack_mismatched_lengths():
    with pytest.raises(InvalidArgumentError):
        stack([[1.0, 2.0]], [0, 1])


def test_correlatetemplate_aligns_moveout():
    data, templates, moveout = _make_array()
    stacked = correlatetemplate(data, templates, moveout, 0)
    start, _ = stacked_domain([len(d) - len(t) + 1 for d, t in zip(data, templates)], moveout)
    assert start + int(np.nanargmax(stacked)) == 150
    assert np.nanmax(stacked) > 0.95


def test_correlatetemplate_tolerance_recovers_misalignment():
    data, templates, moveout = _make_array()
    wrong = [moveout[0], moveout[1] + 2, moveout[2] - 1]
    strict = correlatetemplate(data, templates, wrong, 0)
    tolerant = correlatetemplate(data, templates, wrong, 2)
    assert np.nanmax(tolerant) > np.nanmax(strict)
    assert np.nanmax(tolerant) > 0.95
    assert tolerant.shape == strict.shape


def _brute_force_tolerant_stack(correlations, offsets, tolerance):
    start, stop = stacked_domain([c.size for c in correlations], offsets)
    out = np.full(stop - start, np.nan)
    for i in range(start, stop):
        best = []
        for c, off in zip(correlations, offsets):
            lo = max(i + off - tolerance, 0)
            hi = min(i + off + tolerance, c.size - 1)
            window = c[lo:hi + 1]
            window = window[~np.isnan(window)]
            if window.size:
                best.append(window.max())
        if best:
            out[i - start] = np.mean(best)
    return out


@pytest.mark.parametrize('tolerance', [1, 3])
def test_correlatetemplate_tolerance_is_joint_maximum(tolerance):
    rng = np.random.default_rng(21)
    k = 5
    data = [rng.standard_normal(60), rng.standard_normal(55), rng.standard_normal(64)]
    # a flat stretch gives NaN correlations on channel 1
    data[1][20:30] = 0.7
    templates = [rng.standard_normal(k) for _ in data]
    offsets = [0, 3, -2]

    correlations = correlate_channels(data, templates)
    assert np.isnan(correlations[1]).any()

    result = correlatetemplate(data, templates, offsets, tolerance)
    expected = _brute_force_tolerant_stack(correlations, offsets, tolerance)
    assert result.shape == expected.shape
    np.testing.assert_allclose(result, expected, atol=1e-12)


def test_correlatetemplate_threads_match_sequential():
    data, templates, moveout = _make_array(n_channels=3)
    seq = correlatetemplate(data, templates, moveout, 1)
    par = correlatetemplate(data, templates, moveout, 1, n_workers=3)
    np.testing.assert_array_equal(seq, par)


def test_correlatetemplate_validation():
    data, templates, moveout = _make_array()
    with pytest.raises(InvalidArgumentError):
        correlatetemplate(data, templates[:2], moveout, 0)
    with pytest.raises(InvalidArgumentError):
        correlatetemplate(data, templates, moveout[:2], 0)
    with pytest.raises(InvalidArgumentError):
        correlatetemplate(data, templates, moveout, -1)


def test_correlate_channels_rejects_long_template_before_work():
    with pytest.raises(InvalidArgumentError):
        correlate_channels([np.arange(10.0), np.arange(3.0)], [np.ones(2), np.arange(5.0)])
