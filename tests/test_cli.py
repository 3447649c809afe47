"""
Tests for the CLI interface.
"""
import os
import sqlite3
import tempfile
from unittest.mock import Mock, patch

import yaml
from typer.testing import CliRunner

from quota_gateway.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from quota_gateway.core.day_key import DayKeyDeriver
from quota_gateway.storage.models import UsageRecord
from quota_gateway.storage.repository import SQLiteUsageStore, usage_key

runner = CliRunner()


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up a config pointing at a temporary database."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "usage.db")
        self.config_path = os.path.join(self.temp_dir, "gateway.yaml")
        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump({
                "db_path": self.db_path,
                "daily_limit": 1000,
                "api_key_env": "QG_TEST_KEY"
            }, f)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def seed(self, email, record, day_key=None):
        day_key = day_key or DayKeyDeriver("Asia/Kolkata").derive()
        store = SQLiteUsageStore(self.db_path)
        try:
            store.set(usage_key(email, day_key), record, metadata={"email": email})
        finally:
            store.close()

    def test_no_command_prints_hint(self):
        """Running without a command prints usage hint."""
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Quota Gateway" in result.output

    def test_init_creates_database(self):
        """init creates the database file."""
        result = runner.invoke(app, ["init", "--config", self.config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(self.db_path)

    def test_invalid_config(self):
        """A bad config file fails the command."""
        bad_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(bad_path, 'w', encoding='utf-8') as f:
            yaml.dump({"daily_limt": 5}, f)

        result = runner.invoke(app, ["usage", "a@b.co", "--config", bad_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_usage_for_user(self):
        """usage shows today's counters and remaining quota."""
        self.seed("a@b.co", UsageRecord(80, 40, 120))

        result = runner.invoke(app, ["usage", "a@b.co", "--config", self.config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "120" in result.output
        assert "880" in result.output

    def test_report_for_day(self):
        """report lists every user for the given day."""
        self.seed("amy@b.co", UsageRecord(80, 40, 120), day_key="2024-01-01")
        self.seed("zed@b.co", UsageRecord(600, 400, 1000), day_key="2024-01-01")

        result = runner.invoke(app, ["report", "--day", "2024-01-01", "--config", self.config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "amy@b.co" in result.output
        assert "zed@b.co" in result.output

    def test_report_empty_day(self):
        """report says so when nothing was recorded."""
        result = runner.invoke(app, ["report", "--day", "2024-01-01", "--config", self.config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage recorded" in result.output

    def test_report_corrupt_record(self):
        """report fails cleanly when a stored record is corrupt."""
        self.seed("amy@b.co", UsageRecord(80, 40, 120), day_key="2024-01-01")
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("UPDATE usage_record SET value = ?", ('{"input": null}',))
            conn.commit()
        finally:
            conn.close()

        result = runner.invoke(app, ["report", "--day", "2024-01-01", "--config", self.config_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Corrupt usage record" in result.output

    @patch('quota_gateway.sdk.openai_client.OpenAI')
    def test_chat_success(self, mock_openai_class, monkeypatch):
        """chat prints the reply and charges the user."""
        monkeypatch.setenv("QG_TEST_KEY", "sk-test")
        response = Mock()
        response.choices = [Mock()]
        response.choices[0].message.content = "Article 21 protects life and liberty."
        response.usage.prompt_tokens = 80
        response.usage.completion_tokens = 40
        mock_openai_class.return_value.chat.completions.create.return_value = response

        result = runner.invoke(
            app, ["chat", "a@b.co", "What is Article 21?", "--config", self.config_path]
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "Article 21 protects life and liberty." in result.output
        assert "880 remaining" in result.output

    def test_chat_quota_exceeded(self, monkeypatch):
        """chat fails once the daily limit is reached."""
        monkeypatch.setenv("QG_TEST_KEY", "sk-test")
        self.seed("a@b.co", UsageRecord(600, 400, 1000))

        result = runner.invoke(app, ["chat", "a@b.co", "Hi", "--config", self.config_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "429" in result.output

    def test_chat_missing_credential(self, monkeypatch):
        """chat fails without an API key."""
        monkeypatch.delenv("QG_TEST_KEY", raising=False)

        result = runner.invoke(app, ["chat", "a@b.co", "Hi", "--config", self.config_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "500" in result.output
