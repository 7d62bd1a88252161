import json

import pytest

from utils.config import Config, PipelineSettings
from utils.failures import ConfigError


def write(directory, name, payload):
    (directory / name).write_text(json.dumps(payload))


def test_files_are_merged(tmp_path):
    write(tmp_path, "a.json", {"detection": {"threshold": 0.5}})
    write(tmp_path, "b.json", {"detection": {"nms_threshold": 0.6}, "model": {"input_width": 608}})

    config = Config(str(tmp_path))

    assert config.get("detection.threshold") == 0.5
    assert config.get("detection.nms_threshold") == 0.6
    assert config.get_int("model.input_width") == 608
    assert config.get("missing.key", "fallback") == "fallback"


def test_broken_file_is_skipped(tmp_path):
    (tmp_path / "bad.json").write_text("{ not json")
    write(tmp_path, "good.json", {"sensor": {"fps": 30}})
    config = Config(str(tmp_path))
    assert config.get_float("sensor.fps") == 30.0


def test_environment_overrides(tmp_path, monkeypatch):
    write(tmp_path, "model.json", {"model": {"path": "from_file.pt"}})
    monkeypatch.setenv("FUSION_MODEL_PATH", "from_env.pt")
    assert Config(str(tmp_path)).get("model.path") == "from_env.pt"


def test_typed_getters():
    config = Config("/nonexistent/configs")
    config.set("a.flag", "yes")
    config.set("a.number", "not a number")
    assert config.get_bool("a.flag")
    assert config.get_int("a.number", 7) == 7


def test_settings_defaults_from_empty_config():
    settings = PipelineSettings.from_config(Config("/nonexistent/configs"))
    assert settings.prob_threshold == 0.3
    assert settings.hier_threshold == 0.5
    assert settings.nms_threshold == 0.4
    assert settings.smoothing_window == 3
    assert settings.calibration_offsets == (0.1, 0.0125, 0.46)
    assert settings.max_boxes == 100


def test_settings_from_files(tmp_path):
    write(tmp_path, "all.json", {
        "detection": {"threshold": 0.25, "smoothing_window": 5},
        "geometry": {"calibration_offsets": [0, 0, 1]},
        "model": {"class_labels": ["cup", "bottle"]},
        "visualization": {"enabled": False},
    })
    settings = PipelineSettings.from_config(Config(str(tmp_path)))
    assert settings.prob_threshold == 0.25
    assert settings.smoothing_window == 5
    assert settings.calibration_offsets == (0.0, 0.0, 1.0)
    assert settings.label_for(1) == "bottle"
    assert not settings.enable_visualization


@pytest.mark.parametrize("overrides", [
    {"smoothing_window": 0},
    {"prob_threshold": 1.5},
    {"network_width": 0},
    {"calibration_offsets": (0.1, 0.2)},
    {"max_boxes": 0},
])
def test_invalid_settings_are_rejected(overrides):
    with pytest.raises(ConfigError):
        PipelineSettings(**overrides)


def test_bundled_configs_load(monkeypatch):
    monkeypatch.delenv("FUSION_MODEL_PATH", raising=False)
    config = Config()
    settings = PipelineSettings.from_config(config)
    assert settings.network_width == 416
    assert settings.label_for(0) == "person"
    assert config.get("model.path").endswith(".pt")
