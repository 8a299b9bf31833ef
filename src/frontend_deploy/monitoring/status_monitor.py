"""
Deployment status checking.

Reports the state of both stacks and whether the ECS service is running the
number of tasks it was asked for.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError, WaiterError

from frontend_deploy.aws.stacks import StackDeployer
from frontend_deploy.aws.utils import get_ecs_client
from frontend_deploy.settings import get_settings

logger = logging.getLogger(__name__)


class StatusMonitor:
    """Monitor stack and service health of a deployment."""

    def __init__(self, ecs_client=None, deployer: Optional[StackDeployer] = None):
        self.settings = get_settings()
        self.ecs_client = ecs_client
        self.deployer = deployer

    def _init_clients(self):
        """Initialize AWS clients lazily."""
        if not self.ecs_client:
            self.ecs_client = get_ecs_client()
        if not self.deployer:
            self.deployer = StackDeployer()

    def check_stacks(self) -> Dict[str, Optional[str]]:
        """CloudFormation status of both stacks (None when absent)."""
        self._init_clients()
        return {
            self.settings.registry_stack_name: self.deployer.get_stack_status(self.settings.registry_stack_name),
            self.settings.service_stack_name: self.deployer.get_stack_status(self.settings.service_stack_name),
        }

    def check_service(self) -> Dict[str, Any]:
        """
        Check the ECS service task counts and rollout.

        Returns:
            Dict with status 'healthy', 'degraded' or 'missing'
        """
        self._init_clients()
        cluster = self.settings.resolved_cluster_name
        service_name = self.settings.resolved_service_name

        try:
            response = self.ecs_client.describe_services(cluster=cluster, services=[service_name])
        except self.ecs_client.exceptions.ClusterNotFoundException:
            return {'status': 'missing', 'message': f"Cluster {cluster} not found"}

        services = [s for s in response.get('services', []) if s.get('status') != 'INACTIVE']
        if not services:
            return {'status': 'missing', 'message': f"Service {service_name} not found in {cluster}"}

        service = services[0]
        deployments = service.get('deployments', [])
        primary = next((d for d in deployments if d.get('status') == 'PRIMARY'), {})
        rollout_state = primary.get('rolloutState')

        running = service.get('runningCount', 0)
        desired = service.get('desiredCount', 0)
        healthy = running == desired and rollout_state in (None, 'COMPLETED') and len(deployments) <= 1

        report = {
            'status': 'healthy' if healthy else 'degraded',
            'service_name': service['serviceName'],
            'cluster': cluster,
            'running_count': running,
            'desired_count': desired,
            'pending_count': service.get('pendingCount', 0),
            'rollout_state': rollout_state,
            'deployments': len(deployments),
            'task_definition': service.get('taskDefinition'),
        }

        events = service.get('events', [])
        if events and not healthy:
            report['last_event'] = events[0].get('message')

        return report

    def check_deployment_health(self) -> Dict[str, Any]:
        """Combined report of stacks and service."""
        rolled_back = False
        health_report = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'overall_status': 'healthy',
            'stacks': {},
            'service': {},
            'errors': [],
        }

        try:
            health_report['stacks'] = self.check_stacks()
        except ClientError as e:
            health_report['overall_status'] = 'unhealthy'
            health_report['errors'].append(f"Stack status check failed: {e}")

        for stack_name, status in health_report['stacks'].items():
            if status == 'UPDATE_ROLLBACK_COMPLETE':
                # Last update was rolled back; the previous revision keeps serving
                health_report['errors'].append(f"Stack {stack_name} is {status}")
                rolled_back = True
            elif status is None or not status.endswith('_COMPLETE') or 'ROLLBACK' in status:
                health_report['overall_status'] = 'unhealthy'
                health_report['errors'].append(f"Stack {stack_name} is {status or 'missing'}")

        try:
            health_report['service'] = self.check_service()
        except ClientError as e:
            health_report['service'] = {'status': 'error', 'error': str(e)}
            health_report['overall_status'] = 'unhealthy'
            health_report['errors'].append(f"Service check failed: {e}")

        service_status = health_report['service'].get('status')
        if (service_status != 'healthy' or rolled_back) and health_report['overall_status'] == 'healthy':
            health_report['overall_status'] = 'degraded'

        return health_report

    def wait_until_stable(self, delay: int = 15, max_attempts: int = 40) -> bool:
        """Block until the service reaches a steady state. Returns False on timeout."""
        self._init_clients()
        waiter = self.ecs_client.get_waiter('services_stable')
        try:
            waiter.wait(
                cluster=self.settings.resolved_cluster_name,
                services=[self.settings.resolved_service_name],
                WaiterConfig={'Delay': delay, 'MaxAttempts': max_attempts}
            )
        except WaiterError as e:
            logger.error(f"Service did not stabilize: {e}")
            return False
        logger.info(f"✅ Service {self.settings.resolved_service_name} is stable")
        return True
