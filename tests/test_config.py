import json

import pytest

from gorillamode.core import config as config_module
from gorillamode.core.config import CONFIG_ENV_VAR, PipelineConfig, get_config, load_config


def write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_missing_file_gives_defaults(tmp_path):
    loaded = load_config(tmp_path / "nope.json")
    assert loaded == PipelineConfig()


def test_file_values_override_defaults(tmp_path):
    path = write_json(tmp_path / "pipeline.json", {
        "estimator": {"default_model": "BlazePoseHeavy", "inference_timeout_s": 0.25},
        "tier": {"hysteresis_cycles": 5},
    })
    loaded = load_config(path)
    assert loaded.estimator.default_model == "BlazePoseHeavy"
    assert loaded.estimator.inference_timeout_s == 0.25
    assert loaded.tier.hysteresis_cycles == 5
    assert loaded.queue.capacity == PipelineConfig().queue.capacity


def test_malformed_json_raises_value_error(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{\"queue\": {\"capacity\": 2", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid config file"):
        load_config(path)


def test_invalid_values_raise_value_error(tmp_path):
    path = write_json(tmp_path / "tiers.json", {"tier": {"bronze_threshold": 90.0, "silver_threshold": 50.0}})
    with pytest.raises(ValueError, match="Invalid config file"):
        load_config(path)


def test_env_var_selects_config_file(tmp_path, monkeypatch):
    path = write_json(tmp_path / "env.json", {"queue": {"capacity": 4}})
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    assert load_config().queue.capacity == 4

    monkeypatch.delenv(CONFIG_ENV_VAR)
    assert load_config() == PipelineConfig()


def test_get_config_loads_once(tmp_path, monkeypatch):
    path = write_json(tmp_path / "cached.json", {"feedback": {"max_events": 7}})
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    monkeypatch.setattr(config_module, "_CONFIG_CACHE", None)

    first = get_config()
    write_json(path, {"feedback": {"max_events": 1}})
    assert get_config() is first
    assert first.feedback.max_events == 7
