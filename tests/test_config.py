"""
tests/test_config.py

SwapGraphConfig loading from dicts, YAML files and SWAPGRAPH_CONFIG.
"""

import pytest

from swapgraph.core.config import SwapGraphConfig
from swapgraph.core.exceptions import ValidationError


class TestDefaults:

    def test_defaults(self):
        config = SwapGraphConfig()
        assert config.matching.max_cycle_length == 3
        assert config.matching.selection_mode == "optimizer"
        assert config.settlement.deposit_window_seconds == 86_400
        assert config.journal.path is None
        config.validate()

    def test_to_dict_round_trip(self):
        config = SwapGraphConfig.from_dict({"matching": {"fee_rate": 0.02}, "log_level": "debug"})
        again = SwapGraphConfig.from_dict(config.to_dict())
        assert again == config
        assert again.log_level == "DEBUG"


class TestYaml:

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "swapgraph.yaml"
        path.write_text(
            "matching:\n"
            "  max_cycle_length: 4\n"
            "  shadow_enabled: false\n"
            "settlement:\n"
            "  deposit_window_seconds: 600\n"
            "journal:\n"
            f"  path: {tmp_path / 'journal.jsonl'}\n",
            encoding="utf-8",
        )
        config = SwapGraphConfig.from_yaml(path)
        assert config.matching.max_cycle_length == 4
        assert config.matching.shadow_enabled is False
        assert config.settlement.deposit_window_seconds == 600
        assert config.journal.path.endswith("journal.jsonl")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert SwapGraphConfig.from_yaml(path) == SwapGraphConfig()

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            SwapGraphConfig.from_yaml(path)

    def test_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("matching:\n  timeout_ms: 50\n", encoding="utf-8")
        monkeypatch.setenv("SWAPGRAPH_CONFIG", str(path))
        assert SwapGraphConfig.from_env().matching.timeout_ms == 50

    def test_from_env_unset(self, monkeypatch):
        monkeypatch.delenv("SWAPGRAPH_CONFIG", raising=False)
        assert SwapGraphConfig.from_env() == SwapGraphConfig()


class TestValidation:

    @pytest.mark.parametrize("data", [
        {"matchng": {}},
        {"matching": {"max_cycle_len": 3}},
        {"matching": []},
        {"matching": {"max_cycle_length": 1}},
        {"matching": {"timeout_ms": -5}},
        {"matching": {"max_enumerated_cycles": 0}},
        {"matching": {"selection_mode": "random"}},
        {"settlement": {"deposit_window_seconds": 0}},
    ])
    def test_rejected(self, data):
        with pytest.raises(ValidationError) as exc:
            SwapGraphConfig.from_dict(data)
        assert exc.value.reason_code == "invalid_config"
        assert exc.value.code == "CONSTRAINT_VIOLATION"
