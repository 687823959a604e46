"""
Tests for CLI commands.

These tests verify the command-line interface functionality including:
- train with small synthetic datasets, including --force
- model info, predict-demo and clear
- simulate against a stored model
- db init and db stats
- config set, show and unset
"""

import pytest

from click.testing import CliRunner

from breathflow.cli import cli
from breathflow.database.session import cleanup_database
from breathflow.errors import AcquisitionError

QUICK_TRAIN = ["--epochs", "1", "--samples", "64", "--seed", "3"]


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_database_state():
    """Reset global database state before and after each test."""
    cleanup_database()
    yield
    cleanup_database()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch, config_path):
    """Keep CLI runs away from the user's log directory and config file."""
    monkeypatch.setattr("breathflow.cli.setup_logging", lambda **kwargs: None)


@pytest.fixture
def trained_db(cli_runner, temp_db):
    """Database holding a briefly trained model."""
    result = cli_runner.invoke(cli, ["train", *QUICK_TRAIN, "--db", str(temp_db)])
    assert result.exit_code == 0, result.output
    cleanup_database()
    return temp_db


class TestTrainCommand:
    """Test the train command."""

    def test_train_on_empty_database(self, cli_runner, temp_db):
        result = cli_runner.invoke(cli, ["train", *QUICK_TRAIN, "--db", str(temp_db)])

        assert result.exit_code == 0, result.output
        assert "Model: training" in result.output
        assert "Training report" in result.output
        assert "Model trained and saved" in result.output

    def test_second_train_loads_stored_model(self, cli_runner, trained_db):
        result = cli_runner.invoke(cli, ["train", *QUICK_TRAIN, "--db", str(trained_db)])

        assert result.exit_code == 0, result.output
        assert "Loaded stored model" in result.output
        assert "Model: training" not in result.output

    def test_force_retrains(self, cli_runner, trained_db):
        result = cli_runner.invoke(
            cli, ["train", *QUICK_TRAIN, "--force", "--db", str(trained_db)]
        )

        assert result.exit_code == 0, result.output
        assert "Force retrain" in result.output
        assert "Model trained and saved" in result.output

    def test_invalid_epochs_rejected(self, cli_runner, temp_db):
        result = cli_runner.invoke(cli, ["train", "--epochs", "0", "--db", str(temp_db)])

        assert result.exit_code != 0


class TestModelCommands:
    """Test model inspection commands."""

    def test_info_without_model(self, cli_runner, temp_db):
        result = cli_runner.invoke(cli, ["model", "info", "--db", str(temp_db)])

        assert result.exit_code == 0
        assert "No stored model" in result.output

    def test_info_with_model(self, cli_runner, trained_db):
        result = cli_runner.invoke(cli, ["model", "info", "--db", str(trained_db)])

        assert result.exit_code == 0, result.output
        assert "Parameters:" in result.output
        assert "Classes: inhale, exhale" in result.output
        assert "Trained: yes" in result.output
        assert "breathing-model/weight_data" in result.output

    def test_predict_demo(self, cli_runner, trained_db):
        result = cli_runner.invoke(
            cli, ["model", "predict-demo", "--frames", "4", "--seed", "1", "--db", str(trained_db)]
        )

        assert result.exit_code == 0, result.output
        assert "Accuracy:" in result.output
        assert "/4" in result.output

    def test_predict_demo_without_model_fails(self, cli_runner, temp_db):
        result = cli_runner.invoke(cli, ["model", "predict-demo", "--db", str(temp_db)])

        assert result.exit_code == 1

    def test_clear_requires_confirmation(self, cli_runner, trained_db):
        result = cli_runner.invoke(cli, ["model", "clear", "--db", str(trained_db)], input="n\n")

        assert result.exit_code != 0
        cleanup_database()
        info = cli_runner.invoke(cli, ["model", "info", "--db", str(trained_db)])
        assert "Parameters:" in info.output

    def test_clear_removes_model(self, cli_runner, trained_db):
        result = cli_runner.invoke(cli, ["model", "clear", "--yes", "--db", str(trained_db)])

        assert result.exit_code == 0, result.output
        assert "Removed 3 stored part(s)" in result.output

        cleanup_database()
        info = cli_runner.invoke(cli, ["model", "info", "--db", str(trained_db)])
        assert "No stored model" in info.output


class TestSimulateCommand:
    """Test the synthetic pipeline run."""

    def test_simulate_prints_summary(self, cli_runner, trained_db):
        result = cli_runner.invoke(
            cli, ["simulate", "--cycles", "2", "--seed", "5", "--db", str(trained_db)]
        )

        assert result.exit_code == 0, result.output
        assert "Cycles detected:" in result.output
        assert "Pattern signal:" in result.output
        assert "Pattern quality:" in result.output
        assert "phase=" in result.output


class TestDatabaseCommands:
    """Test db commands."""

    def test_db_init(self, cli_runner, temp_db):
        result = cli_runner.invoke(cli, ["db", "init", "--db", str(temp_db)])

        assert result.exit_code == 0
        assert "Database initialized" in result.output
        assert temp_db.exists()

    def test_db_stats_empty(self, cli_runner, temp_db):
        result = cli_runner.invoke(cli, ["db", "stats", "--db", str(temp_db)])

        assert result.exit_code == 0, result.output
        assert "Database Statistics" in result.output
        assert "Stored blobs: 0" in result.output
        assert "Models: none" in result.output

    def test_db_stats_with_model(self, cli_runner, trained_db):
        result = cli_runner.invoke(cli, ["db", "stats", "--db", str(trained_db)])

        assert result.exit_code == 0, result.output
        assert "Stored blobs: 3" in result.output
        assert "Models: breathing-model" in result.output


class TestConfigCommands:
    """Test config commands."""

    def test_show_without_file(self, cli_runner, config_path):
        result = cli_runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "No config file" in result.output

    def test_set_then_show(self, cli_runner, config_path):
        result = cli_runner.invoke(cli, ["config", "set", "training.epochs", "4"])
        assert result.exit_code == 0, result.output
        assert "✓ training.epochs = 4" in result.output

        shown = cli_runner.invoke(cli, ["config", "show"])

        assert "[training]" in shown.output
        assert "epochs = 4" in shown.output

    def test_set_unknown_key_fails(self, cli_runner, config_path):
        result = cli_runner.invoke(cli, ["config", "set", "training.bogus", "1"])

        assert result.exit_code != 0
        assert "Unknown config key" in result.output

    def test_set_invalid_value_fails(self, cli_runner, config_path):
        result = cli_runner.invoke(cli, ["config", "set", "training.epochs", "zero"])

        assert result.exit_code != 0
        assert "Invalid value" in result.output

    def test_unset(self, cli_runner, config_path):
        cli_runner.invoke(cli, ["config", "set", "model.name", "custom"])

        result = cli_runner.invoke(cli, ["config", "unset", "model.name"])

        assert result.exit_code == 0
        assert "Removed model.name" in result.output
        assert not config_path.exists()

    def test_configured_model_name_used(self, cli_runner, config_path, temp_db):
        cli_runner.invoke(cli, ["config", "set", "model.name", "custom-model"])

        result = cli_runner.invoke(cli, ["train", *QUICK_TRAIN, "--db", str(temp_db)])

        assert result.exit_code == 0, result.output
        assert "'custom-model'" in result.output


def test_version(cli_runner):
    result = cli_runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "breathflow, version" in result.output


class TestListenCommand:
    """Test the live command without audio hardware."""

    def test_acquisition_failure_reported(self, cli_runner, trained_db, monkeypatch):
        class UnavailableMicrophone:
            bin_count = 256
            max_magnitude = 255.0

            def __init__(self, **kwargs):
                pass

            def open(self):
                raise AcquisitionError("Microphone access failed: no input device")

            def read_spectrum(self):
                return None

            def close(self):
                pass

        monkeypatch.setattr("breathflow.cli.SounddeviceSpectrumSource", UnavailableMicrophone)

        result = cli_runner.invoke(cli, ["listen", "--duration", "1", "--db", str(trained_db)])

        assert result.exit_code == 1
        assert "no input device" in result.output
