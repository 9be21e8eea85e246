import json

import numpy as np
import pytest

from config import (
    DEFAULT_ISO_COLOR_MODE,
    DEFAULT_ISO_LEVEL,
    DEFAULT_ISO_QUALITY,
    DEFAULT_WINDOW_MAX,
    DEFAULT_WINDOW_MIN,
    RAYMARCH_DEFAULT_OPACITY,
    RAYMARCH_DEFAULT_STEPS,
)
from core.dto import ColorMode, IsoPipelineDTO, IsoRequest, RaymarchParams, VolumeMeta, quality_to_stride


def test_iso_pipeline_dto_uses_iso_defaults():
    dto = IsoPipelineDTO()
    assert dto.iso_level == DEFAULT_ISO_LEVEL
    assert dto.quality == DEFAULT_ISO_QUALITY
    assert dto.color_mode == DEFAULT_ISO_COLOR_MODE
    assert dto.export_formats == ("vtp",)


def test_iso_pipeline_dto_from_dict_uses_iso_defaults():
    dto = IsoPipelineDTO.from_dict({})
    assert dto == IsoPipelineDTO()


def test_iso_pipeline_dto_from_yaml(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text(
        "loader_type: synthetic\n"
        "synthetic_size: 24\n"
        "iso_level: 47.5\n"
        "quality: Fast\n"
        "export_formats: [ply, vti]\n"
        "raymarch:\n"
        "  enabled: true\n"
        "  opacity: 0.4\n"
        "  win_min: 35\n"
        "  win_max: 50\n",
        encoding="utf-8",
    )
    dto = IsoPipelineDTO.from_yaml(str(path))
    assert dto.synthetic_size == 24
    assert dto.export_formats == ("ply", "vti")
    assert dto.iso_request() == IsoRequest(threshold=47.5, quality_stride=3, color_mode=ColorMode.GRADIENT)
    assert dto.raymarch.enabled is True
    assert (dto.raymarch.win_min, dto.raymarch.win_max) == (35.0, 50.0)


def test_iso_pipeline_dto_json_round_trip(tmp_path):
    dto = IsoPipelineDTO(loader_type="synthetic", lod_tier="Half", export_formats=("npz",))
    path = tmp_path / "run.json"
    path.write_text(json.dumps(dto.to_dict()), encoding="utf-8")
    assert IsoPipelineDTO.from_json(str(path)) == dto


def test_raymarch_params_defaults_and_clamps():
    p = RaymarchParams()
    assert p.enabled is False
    assert p.opacity == RAYMARCH_DEFAULT_OPACITY
    assert p.steps == RAYMARCH_DEFAULT_STEPS
    assert (p.win_min, p.win_max) == (DEFAULT_WINDOW_MIN, DEFAULT_WINDOW_MAX)

    assert p.with_opacity(5.0).opacity == 1.0
    assert p.with_opacity(0.0).opacity == 0.01
    assert p.with_steps(4).steps == 16
    assert p.with_steps(10_000).steps == 512


def test_raymarch_window_order_is_kept():
    p = RaymarchParams()
    raised_min = p.with_window(win_min=70.0)
    assert (raised_min.win_min, raised_min.win_max) == (DEFAULT_WINDOW_MAX, DEFAULT_WINDOW_MAX)
    lowered_max = p.with_window(win_max=10.0)
    assert (lowered_max.win_min, lowered_max.win_max) == (DEFAULT_WINDOW_MIN, DEFAULT_WINDOW_MIN)
    both = p.with_window(20.0, 80.0)
    assert (both.win_min, both.win_max) == (20.0, 80.0)
    assert p.reset_window((12.0, 64.0)).win_max == 64.0


def test_raymarch_window_order_survives_update_sequences():
    rng = np.random.default_rng(7)
    bad_values = (float("nan"), float("inf"), -float("inf"))
    p = RaymarchParams()
    for _ in range(300):
        which = rng.integers(0, 3)
        lo = None if which == 1 else float(rng.uniform(-50.0, 150.0))
        hi = None if which == 0 else float(rng.uniform(-50.0, 150.0))
        if rng.random() < 0.2:
            bad = bad_values[rng.integers(0, len(bad_values))]
            with pytest.raises(ValueError):
                p.with_window(win_min=bad if lo is not None else None, win_max=bad if lo is None else hi)
        else:
            p = p.with_window(win_min=lo, win_max=hi)
        assert p.win_min <= p.win_max


def test_non_finite_parameters_are_rejected():
    nan = float("nan")
    with pytest.raises(ValueError):
        RaymarchParams(win_min=nan)
    with pytest.raises(ValueError):
        RaymarchParams(opacity=float("inf"))
    with pytest.raises(ValueError):
        RaymarchParams().reset_window((0.0, nan))
    with pytest.raises(ValueError):
        IsoRequest(threshold=nan)
    with pytest.raises(ValueError):
        IsoRequest.from_quality(float("-inf"), "Full")


def test_iso_request_quality_presets():
    assert quality_to_stride("Fast") == 3
    assert quality_to_stride("Balanced") == 2
    assert quality_to_stride("Full") == 1
    with pytest.raises(ValueError):
        quality_to_stride("Ultra")

    req = IsoRequest.from_quality(42.0, "Full", "solid")
    assert req.quality_stride == 1
    assert req.quality_label == "Full"
    assert req.color_mode is ColorMode.SOLID
    assert IsoRequest(threshold=1.0, quality_stride=4).quality_label == "Stride 4"
    with pytest.raises(ValueError):
        IsoRequest(threshold=1.0, quality_stride=5)


def test_color_mode_parse():
    assert ColorMode.parse("Gradient") is ColorMode.GRADIENT
    assert ColorMode.parse("gradient magnitude") is ColorMode.GRADIENT
    assert ColorMode.parse(ColorMode.SOLID) is ColorMode.SOLID
    with pytest.raises(ValueError):
        ColorMode.parse("rainbow")


def test_volume_meta_defaults_origin():
    meta = VolumeMeta.from_dict({"dims": [2, 3, 4], "spacing": [1, 1, 1], "valueRange": [0, 1]})
    assert meta.origin == (0.0, 0.0, 0.0)
    assert meta.dims == (2, 3, 4)
