"""Tests for agent configuration loading and validation."""

import json

import pytest
from pydantic import ValidationError

from config.agent_config import AgentConfig, default_agent_config, load_agent_config
from qualification.stage import SpinPhase


def config_data(**overrides):
    data = default_agent_config().model_dump(mode="json")
    data.update(overrides)
    return data


class TestDefaultConfig:
    def test_every_phase_configured(self):
        config = default_agent_config()
        assert set(config.phases) == set(SpinPhase)

    def test_phase_fields_are_defined(self):
        config = default_agent_config()
        keys = {f.key for f in config.bant_fields}
        for phase in SpinPhase:
            assert set(config.phase(phase).data_to_collect) <= keys

    def test_weights(self):
        weights = default_agent_config().weights()
        assert weights["pain_points"] == 20
        assert all(w >= 0 for w in weights.values())

    def test_fields_for_phase(self):
        keys = [f.key for f in default_agent_config().fields_for_phase(SpinPhase.SITUATION)]
        assert "pain_points" in keys


class TestValidation:
    def test_round_trip(self):
        assert AgentConfig.model_validate(config_data()) == default_agent_config()

    def test_missing_phase(self):
        data = config_data()
        del data["phases"]["closing"]
        with pytest.raises(ValidationError, match="missing phase configuration"):
            AgentConfig.model_validate(data)

    def test_undefined_phase_field(self):
        data = config_data()
        data["phases"]["situation"]["data_to_collect"].append("shoe_size")
        with pytest.raises(ValidationError, match="undefined fields"):
            AgentConfig.model_validate(data)

    def test_negative_weight(self):
        data = config_data()
        data["bant_fields"][0]["weight"] = -1
        with pytest.raises(ValidationError):
            AgentConfig.model_validate(data)

    def test_duplicate_field_keys(self):
        data = config_data()
        data["bant_fields"].append(dict(data["bant_fields"][0]))
        with pytest.raises(ValidationError, match="unique"):
            AgentConfig.model_validate(data)

    def test_field_on_terminal_stage(self):
        data = config_data()
        data["bant_fields"][0]["stage"] = "qualified"
        with pytest.raises(ValidationError, match="ordinal stage"):
            AgentConfig.model_validate(data)


class TestLoading:
    def test_default_without_path(self):
        assert load_agent_config(None) == default_agent_config()

    def test_load_from_json(self, tmp_path):
        path = tmp_path / "agent.json"
        path.write_text(json.dumps(config_data(agent_id="acme", version=3)), encoding="utf-8")

        config = load_agent_config(str(path))

        assert config.agent_id == "acme"
        assert config.version == 3
