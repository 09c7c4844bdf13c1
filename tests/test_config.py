"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from ledger_intake.config import (
    Config,
    ConfigValidationError,
    create_default_config,
    load_config,
)


class TestDefaults:
    """Tests for default configuration values."""

    def test_defaults(self):
        """Defaults match the documented intake limits."""
        config = Config()

        assert config.intake.max_concurrent == 2
        assert config.intake.max_file_size_bytes == 10 * 1024 * 1024
        assert ".xml" in config.intake.allowed_extensions
        assert config.matching.tolerance_percent == 5.0
        assert config.matching.window_days == 90
        assert config.matching.candidate_limit == 100
        assert config.matching.min_score == 40
        assert config.workflow.min_justification_length == 10

    def test_default_config_is_valid(self):
        assert Config().validate() == []

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.intake.max_concurrent == 2
        assert config.storage.backend == "local"


class TestLoadConfig:
    """Tests for YAML loading and environment overrides."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
intake:
  max_concurrent: 4
  allowed_extensions: [".PDF", ".png"]
matching:
  tolerance_percent: 2.5
workflow:
  own_tax_ids: ["98.765.432/0001-10"]
  unit_id: "unit-7"
  default_payment_instrument: pix
state_db_path: "/tmp/ledger/state.db"
"""
        )

        config = load_config(path)

        assert config.intake.max_concurrent == 4
        assert config.intake.allowed_extensions == (".pdf", ".png")
        assert config.matching.tolerance_percent == 2.5
        assert config.workflow.own_tax_ids == ["98.765.432/0001-10"]
        assert config.workflow.unit_id == "unit-7"
        assert config.workflow.default_payment_instrument == "pix"
        assert config.state_db_path == Path("/tmp/ledger/state.db")

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGER_INTAKE_RECOGNITION_URL", "https://recognition.test")
        monkeypatch.setenv("LEDGER_INTAKE_RECOGNITION_TOKEN", "secret")
        monkeypatch.setenv("LEDGER_INTAKE_MAX_CONCURRENT", "3")
        monkeypatch.setenv("LEDGER_INTAKE_UNIT_ID", "unit-env")

        config = load_config(tmp_path / "missing.yaml")

        assert config.recognition.base_url == "https://recognition.test"
        assert config.recognition.token == "secret"
        assert config.intake.max_concurrent == 3
        assert config.workflow.unit_id == "unit-env"

    def test_invalid_integer_override_keeps_default(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGER_INTAKE_MAX_CONCURRENT", "many")
        config = load_config(tmp_path / "missing.yaml")
        assert config.intake.max_concurrent == 2

    def test_default_template_round_trip(self, tmp_path):
        """The generated template loads into a valid configuration."""
        path = tmp_path / "nested" / "config.yaml"
        create_default_config(path)

        config = load_config(path)

        assert path.exists()
        assert config.validate() == []
        assert config.storage.folder == "contabilidade"


class TestValidation:
    """Tests for Config.validate()."""

    def test_rejects_zero_concurrency(self):
        config = Config()
        config.intake.max_concurrent = 0
        assert "intake.max_concurrent must be >= 1" in config.validate()

    def test_http_backend_requires_url(self):
        config = Config()
        config.storage.backend = "http"
        errors = config.validate()
        assert any("storage.base_url" in e for e in errors)

    def test_unknown_backend(self):
        config = Config()
        config.storage.backend = "ftp"
        assert any("storage.backend" in e for e in config.validate())

    def test_extension_needs_dot(self):
        config = Config()
        config.intake.allowed_extensions = ("pdf",)
        assert any("must start with '.'" in e for e in config.validate())

    def test_unknown_payment_instrument(self):
        config = Config()
        config.workflow.default_payment_instrument = "cheque"
        assert any("workflow.default_payment_instrument" in e for e in config.validate())

    def test_ensure_valid_raises(self):
        config = Config()
        config.recognition.base_url = ""
        with pytest.raises(ConfigValidationError, match="recognition.base_url"):
            config.ensure_valid()
