"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile

import yaml
from typer.testing import CliRunner

from ai_quota_guard.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, app
from ai_quota_guard.storage.repository import UsageRepository

runner = CliRunner()


class TestCLI:
    """Test CLI commands against a temporary database."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "usage.db")
        self.config_path = os.path.join(self.temp_dir, "quota.yaml")
        config_data = {
            "models": [
                {
                    "name": "model-a",
                    "display_name": "Model A",
                    "daily_limit": 1,
                    "priority": 1,
                    "cost": "high",
                    "cooldown_hours": 3,
                },
                {
                    "name": "model-b",
                    "display_name": "Model B",
                    "daily_limit": 1,
                    "priority": 2,
                    "cost": "low",
                    "cooldown_hours": 1,
                },
            ],
            "settings": {"db_path": self.db_path},
        }
        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def invoke(self, *args):
        return runner.invoke(app, ["--config", self.config_path, *args])

    def test_no_command_prints_hint(self):
        result = self.invoke()
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_invalid_config(self):
        result = runner.invoke(app, ["--config", os.path.join(self.temp_dir, "missing.yaml"), "models"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_init_creates_database(self):
        result = self.invoke("init")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(self.db_path)

    def test_models_lists_registry(self):
        result = self.invoke("models")
        assert result.exit_code == EXIT_CODE_PASS
        assert "model-a" in result.output
        assert "model-b" in result.output
        assert result.output.index("model-a") < result.output.index("model-b")

    def test_default_catalog_without_config(self):
        result = runner.invoke(app, ["models"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Model Registry" in result.output

    def test_record_and_status(self):
        self.invoke("init")

        result = self.invoke("record", "user-1", "model-a")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Recorded request" in result.output

        result = self.invoke("status", "user-1")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Current model: Model B" in result.output
        assert "Requests today: 1" in result.output

    def test_record_unknown_model(self):
        self.invoke("init")
        result = self.invoke("record", "user-1", "model-z")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown model" in result.output

    def test_record_without_database(self):
        result = self.invoke("record", "user-1", "model-a")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Failed to record usage" in result.output

    def test_check_allowed(self):
        self.invoke("init")
        result = self.invoke("check", "user-1", "--enforced")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Allowed: Model A" in result.output
        # check never records usage
        assert UsageRepository(self.db_path).fetch_usage("user-1") == []

    def test_check_exhausted(self):
        self.invoke("init")
        self.invoke("record", "user-1", "model-a")
        self.invoke("record", "user-1", "model-b")

        result = self.invoke("check", "user-1")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Denied" in result.output

        result = self.invoke("check", "user-1", "--enforced")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_check_fails_open_without_database(self):
        result = self.invoke("check", "user-1", "--enforced")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Allowed: Model A" in result.output
        assert "Using default model" in result.output

    def test_next(self):
        self.invoke("init")
        self.invoke("record", "user-1", "model-a")
        self.invoke("record", "user-1", "model-b")

        result = self.invoke("next", "user-1")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Reason: daily_reset" in result.output
        assert "Model: Model A" in result.output

    def test_prune(self):
        self.invoke("init")
        self.invoke("record", "user-1", "model-a")

        result = self.invoke("prune", "--days", "7")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Deleted 0 rows" in result.output
