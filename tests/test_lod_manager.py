import numpy as np
import pytest

from core import Volume
from rendering.lod_manager import LODRenderManager, LODTier, downsample_volume, select_tier


def _volume(dims, data=None, spacing=(1.0, 1.0, 1.0), value_range=(20.0, 60.0)) -> Volume:
    n = dims[0] * dims[1] * dims[2]
    if data is None:
        data = (np.arange(n) * 7 % 256).astype(np.uint8)
    return Volume(dims=dims, spacing=spacing, origin=(1.0, 2.0, 3.0),
                  data=np.asarray(data, dtype=np.uint8), value_range=value_range)


def test_stride_one_is_identity():
    vol = _volume((5, 4, 3))
    assert downsample_volume(vol, 1) is vol


def test_reduced_geometry():
    vol = _volume((5, 3, 7), spacing=(0.5, 1.0, 2.0))
    red = downsample_volume(vol, 2)
    assert red.dims == (3, 2, 4)
    assert red.spacing == (1.0, 2.0, 4.0)
    assert red.origin == vol.origin
    assert red.value_range == vol.value_range
    assert red.data.size == 3 * 2 * 4
    assert red.metadata["LODStride"] == 2


def test_block_mean_rounds_half_up():
    # mean 1.5 -> 2, mean 1.125 -> 1
    assert downsample_volume(_volume((2, 2, 2), [1, 2, 1, 2, 1, 2, 1, 2]), 2).data.tolist() == [2]
    assert downsample_volume(_volume((2, 2, 2), [1, 1, 1, 1, 1, 1, 1, 2]), 2).data.tolist() == [1]


def test_truncated_boundary_block():
    red = downsample_volume(_volume((3, 1, 1), [10, 20, 31]), 2)
    assert red.dims == (2, 1, 1)
    assert red.data.tolist() == [15, 31]


def test_quarter_matches_brute_force():
    rng = np.random.default_rng(3)
    dims = (9, 6, 5)
    vol = _volume(dims, rng.integers(0, 256, size=9 * 6 * 5))
    red = downsample_volume(vol, 4)
    grid = vol.grid().astype(np.int64)
    expected = []
    for z in range(0, 5, 4):
        for y in range(0, 6, 4):
            for x in range(0, 9, 4):
                block = grid[z:z + 4, y:y + 4, x:x + 4]
                expected.append(int(np.floor(block.mean() + 0.5)))
    assert red.data.tolist() == expected


def test_downsample_is_deterministic():
    vol = _volume((7, 7, 7))
    np.testing.assert_array_equal(downsample_volume(vol, 2).data, downsample_volume(vol, 2).data)


def test_invalid_stride():
    with pytest.raises(ValueError):
        downsample_volume(_volume((2, 2, 2)), 0)


def test_select_tier_thresholds():
    assert select_tier(0.1) is LODTier.FULL
    assert select_tier(0.45) is LODTier.FULL
    assert select_tier(0.5) is LODTier.HALF
    assert select_tier(0.70) is LODTier.HALF
    assert select_tier(0.9) is LODTier.QUARTER


def test_select_tier_is_monotone():
    strides = [select_tier(d).stride for d in np.linspace(0.0, 2.0, 201)]
    assert strides == sorted(strides)


def test_select_tier_rejects_inverted_thresholds():
    with pytest.raises(ValueError):
        select_tier(0.5, half_threshold=0.8, quarter_threshold=0.3)


def test_tier_parse():
    assert LODTier.parse("half") is LODTier.HALF
    assert LODTier.parse(4) is LODTier.QUARTER
    assert LODTier.HALF.label == "Half"
    with pytest.raises(ValueError):
        LODTier.parse("Eighth")


def test_manager_switches_and_caches():
    messages = []
    manager = LODRenderManager(status_callback=messages.append)
    vol = _volume((8, 8, 8))
    manager.set_volume(vol)
    assert manager.active_volume is vol

    assert manager.update_for_distance(0.5) is True
    assert manager.current_tier is LODTier.HALF
    assert manager.active_volume.dims == (4, 4, 4)
    assert manager.rebuild_count == 1
    assert "Volume: Building Half LOD (stride 2) ..." in messages
    assert "Volume: LOD ready: 4x4x4" in messages

    n_messages = len(messages)
    assert manager.update_for_distance(0.6) is False
    assert len(messages) == n_messages

    assert manager.update_for_distance(0.1) is True
    assert manager.active_volume is vol
    assert manager.update_for_distance(0.5) is True
    assert manager.rebuild_count == 1


def test_manager_explicit_tier_noop():
    manager = LODRenderManager(status_callback=lambda m: None)
    manager.set_volume(_volume((8, 8, 8)))
    assert manager.set_tier(LODTier.QUARTER) is True
    assert manager.set_tier("Quarter") is False
    assert manager.active_volume.dims == (2, 2, 2)


def test_manager_without_volume():
    manager = LODRenderManager(status_callback=lambda m: None)
    assert manager.active_volume is None
    assert manager.update_for_distance(1.0) is False


def test_get_for_memory_picks_finest_fitting_tier():
    manager = LODRenderManager(status_callback=lambda m: None)
    vol = _volume((64, 64, 64))
    manager.set_volume(vol)
    assert manager.get_for_memory(1.0) is vol
    assert manager.get_for_memory(0.2).dims == (32, 32, 32)
    assert manager.get_for_memory(0.01).dims == (16, 16, 16)
