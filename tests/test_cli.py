"""Tests for the kforge command line interface."""

from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from kforge import __version__
from kforge.cli import error_chain, main
from kforge.errors import ExecutionError, StageError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def component_config(tmp_path):
    chart = tmp_path / "charts" / "metrics"
    chart.mkdir(parents=True)
    (chart / "Chart.yaml").write_text(yaml.safe_dump({"name": "metrics", "version": "1.0.0"}))

    path = tmp_path / "kforge.yaml"
    path.write_text(yaml.safe_dump({
        "components": [{"name": "metrics", "config": {"chart": "${chart_dir}", "namespace": "monitoring"}}],
    }))
    (tmp_path / "kforge.vars.yaml").write_text(yaml.safe_dump({"chart_dir": str(chart)}))
    return path


class TestMain:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_groups(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "cluster" in result.output
        assert "component" in result.output

    def test_cluster_commands(self, runner):
        result = runner.invoke(main, ["cluster", "--help"])
        for command in ("apply", "destroy", "health", "certificate"):
            assert command in result.output

    def test_apply_flags(self, runner):
        result = runner.invoke(main, ["cluster", "apply", "--help"])
        for flag in ("--confirm", "--verbose", "--skip-components", "--upgrade-kubelets", "--config", "--values"):
            assert flag in result.output


class TestErrors:
    def test_missing_config_exits_1(self, runner, tmp_path):
        result = runner.invoke(main, ["cluster", "apply", "--config", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output

    def test_cluster_command_requires_platform(self, runner, component_config):
        result = runner.invoke(main, ["cluster", "destroy", "--config", str(component_config)])

        assert result.exit_code == 1
        assert "no platform configured" in result.output

    def test_error_chain(self):
        cause = ExecutionError("executing Terraform failed")
        error = StageError("apply-infrastructure", cause)
        error.__cause__ = cause

        assert error_chain(error) == "apply-infrastructure: executing Terraform failed"

    def test_error_chain_includes_distinct_causes(self):
        root = OSError("disk full")
        error = ExecutionError("Creating log file failed")
        error.__cause__ = root

        assert error_chain(error) == "Creating log file failed: caused by: disk full"


class TestComponentCommands:
    def test_render_manifest(self, runner, component_config):
        rendered = "---\n# Source: metrics/templates/deployment.yaml\nkind: Deployment\n"

        with patch("kforge.helm.HelmClient.template", return_value=rendered) as mock_template:
            result = runner.invoke(main, ["component", "render-manifest", "--config", str(component_config)])

        assert result.exit_code == 0, result.output
        assert "# manifests for component metrics" in result.output
        assert "# metrics/templates/deployment.yaml" in result.output
        assert mock_template.call_args[0][2] == "monitoring"

    def test_render_unknown_component(self, runner, component_config):
        result = runner.invoke(
            main, ["component", "render-manifest", "nope", "--config", str(component_config)]
        )

        assert result.exit_code == 1
        assert "components not configured: nope" in result.output

    def test_delete_declined(self, runner, component_config):
        with patch("kforge.helm.HelmClient.uninstall") as mock_uninstall:
            result = runner.invoke(
                main,
                ["component", "delete", "metrics", "--config", str(component_config)],
                input="no\n",
            )

        assert result.exit_code == 0
        assert "Components deletion cancelled." in result.output
        mock_uninstall.assert_not_called()

    def test_apply_passes_kubeconfig(self, runner, component_config, tmp_path):
        kubeconfig = tmp_path / "kubeconfig"

        with patch("kforge.helm.HelmClient.history", return_value=[]), \
                patch("kforge.helm.HelmClient.install") as mock_install:
            result = runner.invoke(
                main,
                ["component", "apply", "--config", str(component_config), "--kubeconfig-file", str(kubeconfig)],
            )

        assert result.exit_code == 0, result.output
        mock_install.assert_called_once()
        assert "Successfully applied component 'metrics' configuration!" in result.output

    def test_log_file_receives_json_records(self, runner, component_config, tmp_path):
        log_file = tmp_path / "logs" / "kforge.jsonl"

        with patch("kforge.helm.HelmClient.template", return_value=""):
            result = runner.invoke(
                main,
                ["--log-file", str(log_file), "component", "render-manifest", "--config", str(component_config)],
            )

        assert result.exit_code == 0, result.output
        assert log_file.exists()
