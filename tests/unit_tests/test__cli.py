import json
from pathlib import Path
from unittest.mock import MagicMock

import boto3
import pytest
from click.testing import CliRunner

from frontend_deploy.cli import cli
from frontend_deploy.monitoring.status_monitor import StatusMonitor
from frontend_deploy.settings import get_settings
from tests.consts import TEST_APP_NAME, TEST_REGION, TEST_REPOSITORY_URI


@pytest.fixture
def runner():
    return CliRunner()


def test_show_config(runner):
    result = runner.invoke(cli, ["show-config"])

    assert result.exit_code == 0
    assert f"Repository: {TEST_APP_NAME}-repo" in result.output
    assert "Task CPU/Memory: 256/512" in result.output


def test_plan_lists_six_steps(runner):
    result = runner.invoke(cli, ["plan"])

    lines = [line for line in result.output.splitlines() if line[:2] in {f"{i}." for i in range(1, 7)}]
    assert result.exit_code == 0
    assert len(lines) == 6
    assert lines[0].startswith("1. aws cloudformation deploy")
    assert lines[5].startswith("6. aws cloudformation deploy")


def test_plan_infrastructure_only(runner):
    result = runner.invoke(cli, ["plan", "--infrastructure-only"])

    assert result.exit_code == 0
    assert not any(line.startswith("2.") for line in result.output.splitlines())


def test_render_writes_build_files_and_templates(runner, tmp_path):
    settings = get_settings()
    result = runner.invoke(cli, ["render"])

    assert result.exit_code == 0
    assert (Path(settings.build_context) / "Dockerfile").exists()
    assert (Path(settings.build_context) / "nginx.conf").exists()
    registry = json.loads((Path(settings.template_dir) / "registry.json").read_text())
    assert registry['Resources']['Cluster']['Type'] == 'AWS::ECS::Cluster'


def test_deploy_dry_run(runner):
    result = runner.invoke(cli, ["deploy", "--dry-run"])

    assert result.exit_code == 0
    assert '"status": "dry-run"' in result.output


def test_deploy_dry_run_with_image_tag(runner):
    result = runner.invoke(cli, ["deploy", "--dry-run", "--image-tag", "v42"])

    assert result.exit_code == 0
    assert ":v42" in result.output


def test_deploy_without_network_fails(runner, monkeypatch):
    monkeypatch.delenv("VPC_ID")
    get_settings.cache_clear()

    result = runner.invoke(cli, ["deploy"])

    assert result.exit_code == 1
    assert "VPC_ID" in result.output


def test_invalid_configuration(runner, monkeypatch):
    monkeypatch.setenv("TASK_MEMORY", "3")
    get_settings.cache_clear()

    result = runner.invoke(cli, ["show-config"])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_state_without_deployment(runner):
    result = runner.invoke(cli, ["state"])

    assert result.exit_code == 0
    assert json.loads(result.output) == {"status": "no_deployment"}


def test_destroy_requires_confirmation(runner):
    result = runner.invoke(cli, ["destroy"], input="n\n")

    assert result.exit_code == 1
    assert "Aborted" in result.output


def test_deploy_failure_exits_non_zero(runner, mocked_aws, monkeypatch):
    monkeypatch.setattr("frontend_deploy.aws.registry.shutil.which", lambda name: None)

    result = runner.invoke(cli, ["deploy"])

    assert result.exit_code == 1
    assert "Deployment failed" in result.output
    with open(get_settings().state_file) as f:
        steps = json.load(f)['steps']
    assert steps['provision-registry']['status'] == 'completed'
    assert steps['registry-login']['status'] == 'failed'
    assert steps['provision-service']['status'] == 'pending'


def test_build_push_without_repository(runner, mocked_aws):
    result = runner.invoke(cli, ["build-push"])

    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_build_push_runs_docker(runner, mocked_aws, monkeypatch):
    boto3.client('ecr', region_name=TEST_REGION).create_repository(repositoryName=f"{TEST_APP_NAME}-repo")
    run = MagicMock()
    monkeypatch.setattr("frontend_deploy.aws.registry.shutil.which", lambda name: "/usr/bin/docker")
    monkeypatch.setattr("frontend_deploy.aws.registry.subprocess.run", run)

    result = runner.invoke(cli, ["build-push"])

    assert result.exit_code == 0
    assert f"Image pushed: {TEST_REPOSITORY_URI}:latest" in result.output
    assert [call.args[0][1] for call in run.call_args_list] == ['login', 'build', 'tag', 'push']


def test_status_of_empty_account_is_unhealthy(runner, mocked_aws):
    result = runner.invoke(cli, ["status"])

    assert result.exit_code == 1
    assert '"overall_status": "unhealthy"' in result.output


def test_status_degraded_exits_zero(runner, monkeypatch):
    report = {'overall_status': 'degraded', 'stacks': {}, 'service': {}, 'errors': []}
    monkeypatch.setattr(StatusMonitor, "check_deployment_health", lambda self: report)

    result = runner.invoke(cli, ["status"])

    assert result.exit_code == 0
    assert '"overall_status": "degraded"' in result.output


def test_destroy_yes_removes_registry(runner, mocked_aws):
    deployed = runner.invoke(cli, ["deploy", "--infrastructure-only"])
    assert deployed.exit_code == 0

    result = runner.invoke(cli, ["destroy", "--yes"])

    assert result.exit_code == 0
    assert '"registry_stack_deleted": true' in result.output
    assert '"service_stack_deleted": false' in result.output
