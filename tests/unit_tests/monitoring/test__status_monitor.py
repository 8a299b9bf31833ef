from unittest.mock import MagicMock

import boto3
import pytest

from frontend_deploy.monitoring.status_monitor import StatusMonitor
from tests.consts import TEST_APP_NAME, TEST_REGION


def _service(running=1, desired=1, rollout='COMPLETED', deployments=1):
    return {
        'serviceName': f"{TEST_APP_NAME}-service",
        'status': 'ACTIVE',
        'runningCount': running,
        'desiredCount': desired,
        'pendingCount': desired - running,
        'taskDefinition': f"arn:aws:ecs:{TEST_REGION}:123456789012:task-definition/{TEST_APP_NAME}:3",
        'deployments': [{'status': 'PRIMARY', 'rolloutState': rollout}]
                       + [{'status': 'ACTIVE'}] * (deployments - 1),
        'events': [{'message': 'has started 1 tasks'}],
    }


@pytest.fixture
def deployer():
    deployer = MagicMock()
    deployer.get_stack_status.return_value = 'CREATE_COMPLETE'
    return deployer


def test_healthy_service(deployer):
    ecs = MagicMock()
    ecs.describe_services.return_value = {'services': [_service()]}

    report = StatusMonitor(ecs_client=ecs, deployer=deployer).check_service()

    assert report['status'] == 'healthy'
    assert report['running_count'] == 1
    assert 'last_event' not in report
    ecs.describe_services.assert_called_once_with(
        cluster=f"{TEST_APP_NAME}-cluster", services=[f"{TEST_APP_NAME}-service"]
    )


@pytest.mark.parametrize("service", [
    _service(running=0, desired=2),
    _service(rollout='IN_PROGRESS'),
    _service(deployments=2),
])
def test_degraded_service(deployer, service):
    ecs = MagicMock()
    ecs.describe_services.return_value = {'services': [service]}

    report = StatusMonitor(ecs_client=ecs, deployer=deployer).check_service()

    assert report['status'] == 'degraded'
    assert report['last_event'] == 'has started 1 tasks'


def test_inactive_service_is_missing(deployer):
    ecs = MagicMock()
    inactive = _service()
    inactive['status'] = 'INACTIVE'
    ecs.describe_services.return_value = {'services': [inactive]}

    assert StatusMonitor(ecs_client=ecs, deployer=deployer).check_service()['status'] == 'missing'


def test_missing_cluster(mocked_aws, deployer):
    report = StatusMonitor(deployer=deployer).check_service()
    assert report['status'] == 'missing'


def test_missing_service_in_cluster(mocked_aws, deployer):
    boto3.client('ecs', region_name=TEST_REGION).create_cluster(clusterName=f"{TEST_APP_NAME}-cluster")

    report = StatusMonitor(deployer=deployer).check_service()

    assert report['status'] == 'missing'


def test_overall_health(deployer):
    ecs = MagicMock()
    ecs.describe_services.return_value = {'services': [_service()]}

    report = StatusMonitor(ecs_client=ecs, deployer=deployer).check_deployment_health()

    assert report['overall_status'] == 'healthy'
    assert report['errors'] == []
    assert set(report['stacks']) == {f"{TEST_APP_NAME}-registry", f"{TEST_APP_NAME}-service"}


def test_rolled_back_update_is_degraded(deployer):
    deployer.get_stack_status.side_effect = ['CREATE_COMPLETE', 'UPDATE_ROLLBACK_COMPLETE']
    ecs = MagicMock()
    ecs.describe_services.return_value = {'services': [_service()]}

    report = StatusMonitor(ecs_client=ecs, deployer=deployer).check_deployment_health()

    assert report['overall_status'] == 'degraded'
    assert any('UPDATE_ROLLBACK_COMPLETE' in error for error in report['errors'])


@pytest.mark.parametrize("status", ['ROLLBACK_COMPLETE', 'UPDATE_ROLLBACK_FAILED', 'CREATE_IN_PROGRESS', None])
def test_broken_stack_is_unhealthy(deployer, status):
    deployer.get_stack_status.side_effect = ['CREATE_COMPLETE', status]
    ecs = MagicMock()
    ecs.describe_services.return_value = {'services': [_service()]}

    report = StatusMonitor(ecs_client=ecs, deployer=deployer).check_deployment_health()

    assert report['overall_status'] == 'unhealthy'


def test_degraded_service_degrades_overall(deployer):
    ecs = MagicMock()
    ecs.describe_services.return_value = {'services': [_service(running=0)]}

    report = StatusMonitor(ecs_client=ecs, deployer=deployer).check_deployment_health()

    assert report['overall_status'] == 'degraded'
