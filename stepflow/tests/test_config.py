"""
Tests for configuration loading
"""

import pytest

from stepflow.config import CONFIG_ENV_VAR, OrchestratorConfig, load_config
from stepflow.errors import ConfigurationError


class TestLoadConfig:
    """Test YAML configuration loading"""

    def test_packaged_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        config = load_config()
        assert config.execution.defaults.max_parallel_steps == 5
        assert config.execution.defaults.default_retry_policy.max_attempts == 3
        assert config.circuit_breaker.failure_threshold == 5
        assert config.storage.backend == "memory"

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "absent.yaml"))
        assert config == OrchestratorConfig()

    def test_environment_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STEPFLOW_TEST_DIR", "/var/lib/stepflow")
        path = tmp_path / "config.yaml"
        path.write_text("storage:\n  backend: sqlite\n  path: ${STEPFLOW_TEST_DIR}/state.db\n")

        config = load_config(str(path))

        assert config.storage.backend == "sqlite"
        assert config.storage.path == "/var/lib/stepflow/state.db"

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("server:\n  port: 9100\ntools:\n  - name: weather\n    base_url: http://tools.local\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        config = load_config()

        assert config.server.port == 9100
        assert config.tools[0].name == "weather"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("logging: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("circuit_breaker:\n  failure_threshold: 0\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path))
        assert "circuit_breaker.failure_threshold" in exc_info.value.message
