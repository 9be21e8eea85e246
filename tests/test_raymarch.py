import numpy as np
import pytest

from core import RaymarchParams, Volume
from core.colormap import hex_to_rgb, thermal_ramp
from config import THERMAL_GREEN, THERMAL_RED, THERMAL_YELLOW
from rendering.raymarch import RaymarchCompositor, framing_camera, intersect_box, ray_jitter, smoothstep


def _uniform(byte_value: int, dims=(5, 5, 5), value_range=(0.0, 100.0)) -> Volume:
    n = dims[0] * dims[1] * dims[2]
    return Volume(dims=dims, spacing=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0),
                  data=np.full(n, byte_value, dtype=np.uint8), value_range=value_range)


def _rgb(hex_color):
    return np.array(hex_to_rgb(hex_color)) / 255.0


def test_intersect_box_hit_and_miss():
    t_in, t_out = intersect_box([[-5.0, 0.5, 0.5]], [[1.0, 0.0, 0.0]], [0, 0, 0], [1, 1, 1])
    assert t_in[0] == pytest.approx(5.0)
    assert t_out[0] == pytest.approx(6.0)

    t_in, t_out = intersect_box([[-5.0, 0.5, 0.5]], [[-1.0, 0.0, 0.0]], [0, 0, 0], [1, 1, 1])
    assert t_out[0] <= 0


def test_ray_jitter_is_deterministic_and_bounded():
    pts = np.random.default_rng(0).uniform(-50, 50, size=(1000, 3))
    a = ray_jitter(pts)
    b = ray_jitter(pts.copy())
    np.testing.assert_array_equal(a, b)
    assert np.all((a >= 0.0) & (a < 1.0))


def test_smoothstep():
    np.testing.assert_allclose(smoothstep(30.0, 55.0, [0.0, 30.0, 42.5, 55.0, 90.0]), [0.0, 0.0, 0.5, 1.0, 1.0])
    # Collapsed window acts as a step
    np.testing.assert_allclose(smoothstep(40.0, 40.0, [39.0, 41.0]), [0.0, 1.0])


def test_thermal_ramp_segments():
    np.testing.assert_allclose(thermal_ramp(0.0), _rgb(THERMAL_GREEN))
    np.testing.assert_allclose(thermal_ramp(0.5), _rgb(THERMAL_YELLOW))
    np.testing.assert_allclose(thermal_ramp(1.0), _rgb(THERMAL_RED))
    assert thermal_ramp(np.zeros((4, 2))).shape == (4, 2, 3)


def test_missed_ray_contributes_nothing():
    comp = RaymarchCompositor(_uniform(255), RaymarchParams(opacity=0.5))
    res = comp.march([[-10.0, 2.0, 2.0]], [[-1.0, 0.0, 0.0]])
    assert not res.hit[0]
    assert res.alpha[0] == 0.0
    np.testing.assert_array_equal(res.rgb[0], [0.0, 0.0, 0.0])


def test_cold_volume_is_transparent():
    comp = RaymarchCompositor(_uniform(0), RaymarchParams(opacity=1.0))
    res = comp.march([[-10.0, 2.0, 2.0]], [[1.0, 0.0, 0.0]])
    assert res.hit[0]
    assert res.alpha[0] == 0.0


def test_early_termination_and_monotone_alpha():
    comp = RaymarchCompositor(_uniform(255), RaymarchParams(opacity=0.3))
    res = comp.march([[-10.0, 2.0, 2.0]], [[1.0, 0.0, 0.0]], return_trace=True)
    trace = res.trace[0]
    assert trace.shape == (128,)
    assert np.all(np.diff(trace) >= 0.0)
    assert trace.max() <= 1.0
    # Each step adds 0.3 of the remainder; marching stops after the step
    # that pushes accumulated alpha past 0.98
    expected = 1.0 - 0.7 ** 11
    assert res.alpha[0] == pytest.approx(expected)
    assert trace[10] == pytest.approx(expected)
    np.testing.assert_allclose(trace[10:], expected)


def test_hot_colour_is_red():
    comp = RaymarchCompositor(_uniform(255), RaymarchParams(opacity=0.3))
    res = comp.march([[-10.0, 2.0, 2.0]], [[1.0, 0.0, 0.0]])
    np.testing.assert_allclose(res.rgb[0] / res.alpha[0], _rgb(THERMAL_RED), atol=1e-9)


def test_alpha_bounded_for_many_rays():
    rng = np.random.default_rng(1)
    data = rng.integers(0, 256, size=6 * 5 * 4).astype(np.uint8)
    vol = Volume(dims=(6, 5, 4), spacing=(0.5, 1.0, 2.0), origin=(-1.0, 0.0, 1.0),
                 data=data, value_range=(20.0, 60.0))
    comp = RaymarchCompositor(vol, RaymarchParams(opacity=0.8, steps=64, win_min=25.0, win_max=50.0))
    origins = rng.uniform(-10, 10, size=(300, 3))
    dirs = rng.normal(size=(300, 3))
    res = comp.march(origins, dirs, return_trace=True)
    assert np.all(res.alpha >= 0.0) and np.all(res.alpha <= 1.0)
    assert np.all(np.diff(res.trace, axis=1) >= -1e-12)
    assert np.all(res.rgb >= 0.0)


def test_batching_does_not_change_results():
    rng = np.random.default_rng(2)
    data = rng.integers(0, 256, size=4 * 4 * 4).astype(np.uint8)
    vol = Volume(dims=(4, 4, 4), spacing=(1, 1, 1), origin=(0, 0, 0), data=data, value_range=(0, 100))
    origins = rng.uniform(-6, 9, size=(10, 3))
    dirs = np.array([1.5, 1.5, 1.5]) - origins
    whole = RaymarchCompositor(vol, RaymarchParams(opacity=0.4)).march(origins, dirs)
    batched = RaymarchCompositor(vol, RaymarchParams(opacity=0.4), batch_rays=3).march(origins, dirs)
    np.testing.assert_allclose(whole.alpha, batched.alpha, rtol=1e-12, atol=1e-15)
    np.testing.assert_allclose(whole.rgb, batched.rgb, rtol=1e-12, atol=1e-15)


def test_static_camera_is_reproducible():
    vol = _uniform(200)
    comp = RaymarchCompositor(vol, RaymarchParams(opacity=0.2))
    first = comp.render_image(eye=(2.0, -8.0, 2.0), target=(2.0, 2.0, 2.0), width=8, height=6)
    second = comp.render_image(eye=(2.0, -8.0, 2.0), target=(2.0, 2.0, 2.0), width=8, height=6)
    assert first.shape == (6, 8, 4)
    np.testing.assert_array_equal(first, second)
    assert first[3, 4, 3] > 0.0


def test_flat_volume_is_hit():
    vol = _uniform(255, dims=(4, 4, 1))
    comp = RaymarchCompositor(vol, RaymarchParams(opacity=0.5))
    res = comp.march([[1.5, 1.5, -5.0]], [[0.0, 0.0, 1.0]])
    assert res.hit[0]
    assert res.alpha[0] > 0.0


def test_apply_reports_changes():
    params = RaymarchParams()
    comp = RaymarchCompositor(_uniform(10), params)
    assert comp.apply(params) is False
    assert comp.apply(params.with_opacity(0.5)) is True
    assert comp.params.opacity == 0.5


def test_zero_direction_rejected():
    comp = RaymarchCompositor(_uniform(10))
    with pytest.raises(ValueError):
        comp.march([[0.0, 0.0, 0.0]], [[0.0, 0.0, 0.0]])


def test_framing_camera_keeps_box_in_view():
    box_min, box_max = np.zeros(3), np.array([4.0, 8.0, 2.0])
    eye, target = framing_camera(box_min, box_max, fov_deg=40.0)
    np.testing.assert_allclose(target, [2.0, 4.0, 1.0])
    corners = np.array([[x, y, z] for x in (0.0, 4.0) for y in (0.0, 8.0) for z in (0.0, 2.0)])
    forward = (target - eye) / np.linalg.norm(target - eye)
    to_corners = corners - eye
    cos_angles = to_corners @ forward / np.linalg.norm(to_corners, axis=1)
    assert np.all(cos_angles >= np.cos(np.radians(20.0)) - 1e-9)


def test_snapshot_sees_hot_volume():
    params = RaymarchParams(enabled=True, opacity=1.0, win_min=0.0, win_max=50.0)
    image = RaymarchCompositor(_uniform(255), params).snapshot(24, 16)
    assert image.shape == (16, 24, 4)
    assert image[8, 12, 3] > 0.9
    assert image[0, 0, 3] == 0.0
