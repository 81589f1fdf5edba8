# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Tests for the pyfilter CLI."""

import json

from typer.testing import CliRunner

from pyfilter import __version__
from pyfilter.cli import app

runner = CliRunner()


class TestInfoAndVersion:
    """Tests for the info and version commands."""

    def test_info(self):
        result = runner.invoke(app, ["info"])

        assert result.exit_code == 0
        info = json.loads(result.output)
        assert info["name"] == "pyfilter"
        assert "script" in info["config"]

    def test_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestRunCommand:
    """Tests for pyfilter run."""

    def _write_readings(self, tmp_path, items):
        path = tmp_path / "readings.json"
        path.write_text(json.dumps(items))
        return path

    def test_run_script(self, tmp_path, scripts_dir):
        """Filtered readings are printed as JSON."""
        input_path = self._write_readings(
            tmp_path, [{"asset_code": "temp1", "reading": {"c": 21.5}}]
        )

        result = runner.invoke(
            app,
            ["run", "uppercase_asset", "--input", str(input_path), "--scripts-dir", str(scripts_dir)],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == [{"asset_code": "TEMP1", "reading": {"c": 21.5}}]

    def test_run_with_config_file(self, tmp_path, scripts_dir):
        """A category file supplies the script configuration."""
        input_path = self._write_readings(tmp_path, [{"asset_code": "a", "reading": {"v": 1}}])
        config_path = tmp_path / "filter.yaml"
        config_path.write_text("config:\n  value: '{\"fail\": true}'\n")

        result = runner.invoke(
            app,
            [
                "run", "bad_config",
                "--input", str(input_path),
                "--config", str(config_path),
                "--scripts-dir", str(scripts_dir),
            ],
        )

        assert result.exit_code == 1
        assert "failed to initialise" in result.output

    def test_run_missing_script_passthrough(self, tmp_path, scripts_dir):
        """An unknown script leaves the data untouched."""
        items = [{"asset_code": "temp1", "reading": {"c": 1}}]
        input_path = self._write_readings(tmp_path, items)

        result = runner.invoke(
            app,
            ["run", "no_such_script", "--input", str(input_path), "--scripts-dir", str(scripts_dir)],
        )

        assert result.exit_code == 0
        assert '"asset_code": "temp1"' in result.output

    def test_run_bad_input(self, tmp_path, scripts_dir):
        """A readings file that is not a list is rejected."""
        input_path = tmp_path / "readings.json"
        input_path.write_text('{"asset_code": "a"}')

        result = runner.invoke(
            app,
            ["run", "uppercase_asset", "--input", str(input_path), "--scripts-dir", str(scripts_dir)],
        )

        assert result.exit_code == 1
        assert "must contain a JSON list" in result.output

    def test_run_reading_not_a_dict(self, tmp_path, scripts_dir):
        """A reading whose datapoints are not an object is rejected cleanly."""
        input_path = self._write_readings(tmp_path, [{"asset_code": "a", "reading": [1]}])

        result = runner.invoke(
            app,
            ["run", "uppercase_asset", "--input", str(input_path), "--scripts-dir", str(scripts_dir)],
        )

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert not isinstance(result.exception, TypeError)


class TestScriptCommand:
    """Tests for pyfilter script list/check."""

    def test_list(self, scripts_dir):
        result = runner.invoke(app, ["script", "list", "--scripts-dir", str(scripts_dir)])

        assert result.exit_code == 0
        assert "uppercase_asset" in result.output
        assert "set_filter_config, scale" in result.output

    def test_list_empty(self, tmp_path):
        result = runner.invoke(app, ["script", "list", "--scripts-dir", str(tmp_path / "none")])

        assert result.exit_code == 0
        assert "No scripts found" in result.output

    def test_check_ok(self, scripts_dir):
        result = runner.invoke(app, ["script", "check", "uppercase_asset", "--scripts-dir", str(scripts_dir)])

        assert result.exit_code == 0
        assert "OK" in result.output

    def test_check_missing_entry(self, scripts_dir):
        result = runner.invoke(app, ["script", "check", "no_filter_entry", "--scripts-dir", str(scripts_dir)])

        assert result.exit_code == 1
        assert "not usable" in result.output

    def test_check_bad_name(self, scripts_dir):
        result = runner.invoke(app, ["script", "check", "bad-name", "--scripts-dir", str(scripts_dir)])

        assert result.exit_code == 1
        assert "valid Python module name" in result.output
