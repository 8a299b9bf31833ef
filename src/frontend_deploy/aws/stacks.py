"""
CloudFormation Stack Deployment
Creates or updates a stack from a rendered template, waits for it to settle
and returns its outputs.
"""
import logging
import shlex
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError, WaiterError

from frontend_deploy.aws.utils import get_cloudformation_client
from frontend_deploy.errors import StackDeploymentError
from frontend_deploy.infrastructure.templates import StackTemplate
from frontend_deploy.settings import get_settings

logger = logging.getLogger(__name__)

NO_UPDATES_MESSAGE = "No updates are to be performed"

# A stack left in one of these states cannot be updated, only replaced
UNRECOVERABLE_STATUSES = {"ROLLBACK_COMPLETE", "ROLLBACK_FAILED", "DELETE_FAILED"}

FAILED_EVENT_SUFFIX = "_FAILED"


class StackDeployer:
    """Deploys CloudFormation stacks and reports their outcome."""

    def __init__(self, cloudformation_client=None, waiter_delay: Optional[int] = None,
                 waiter_max_attempts: Optional[int] = None):
        self.settings = get_settings()
        self.cf_client = cloudformation_client or get_cloudformation_client()
        self.waiter_config = {
            'Delay': waiter_delay or self.settings.waiter_delay,
            'MaxAttempts': waiter_max_attempts or self.settings.waiter_max_attempts,
        }

    def get_stack(self, stack_name: str) -> Optional[Dict[str, Any]]:
        """Describe a stack, or None if it does not exist."""
        try:
            response = self.cf_client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if 'does not exist' in e.response['Error'].get('Message', ''):
                return None
            raise
        stacks = response.get('Stacks', [])
        return stacks[0] if stacks else None

    def stack_exists(self, stack_name: str) -> bool:
        return self.get_stack(stack_name) is not None

    def get_stack_status(self, stack_name: str) -> Optional[str]:
        stack = self.get_stack(stack_name)
        return stack['StackStatus'] if stack else None

    def get_outputs(self, stack_name: str) -> Dict[str, str]:
        """Stack outputs as a plain key/value dict."""
        stack = self.get_stack(stack_name)
        if stack is None:
            return {}
        return {o['OutputKey']: o['OutputValue'] for o in stack.get('Outputs', [])}

    def deploy(self, template: StackTemplate) -> Dict[str, str]:
        """Create the stack if missing, update it otherwise, and return its outputs."""
        stack_name = template.stack_name
        stack_kwargs = self._stack_kwargs(template)

        status = self.get_stack_status(stack_name)
        if status in UNRECOVERABLE_STATUSES:
            logger.warning(f"Stack {stack_name} is in {status}; deleting before re-creating")
            self.delete(stack_name)
            status = None

        if status is None:
            logger.info(f"Creating stack: {stack_name}")
            self.cf_client.create_stack(**stack_kwargs)
            self._wait(stack_name, 'stack_create_complete')
            logger.info(f"✅ Stack created: {stack_name}")
        else:
            logger.info(f"Updating stack: {stack_name} (current status {status})")
            try:
                self.cf_client.update_stack(**stack_kwargs)
            except ClientError as e:
                if NO_UPDATES_MESSAGE in e.response['Error'].get('Message', ''):
                    logger.info(f"Stack {stack_name} is already up to date")
                    return self.get_outputs(stack_name)
                logger.error(f"Failed to update stack {stack_name}: {e}")
                raise
            self._wait(stack_name, 'stack_update_complete')
            logger.info(f"✅ Stack updated: {stack_name}")

        return self.get_outputs(stack_name)

    def delete(self, stack_name: str) -> bool:
        """Delete a stack and wait for it to go away. Returns False if it was absent."""
        if not self.stack_exists(stack_name):
            logger.info(f"Stack {stack_name} does not exist, nothing to delete")
            return False

        logger.info(f"Deleting stack: {stack_name}")
        self.cf_client.delete_stack(StackName=stack_name)
        self._wait(stack_name, 'stack_delete_complete')
        logger.info(f"🗑️ Stack deleted: {stack_name}")
        return True

    def get_failed_events(self, stack_name: str) -> List[Dict[str, Any]]:
        """Events whose status ends in _FAILED, newest first."""
        try:
            response = self.cf_client.describe_stack_events(StackName=stack_name)
        except ClientError as e:
            logger.warning(f"Could not read events for {stack_name}: {e}")
            return []
        return [
            event for event in response.get('StackEvents', [])
            if event.get('ResourceStatus', '').endswith(FAILED_EVENT_SUFFIX)
        ]

    def _stack_kwargs(self, template: StackTemplate) -> Dict[str, Any]:
        stack_kwargs = {
            'StackName': template.stack_name,
            'TemplateBody': template.render(),
            'Parameters': [
                {'ParameterKey': key, 'ParameterValue': value}
                for key, value in template.parameters.items()
            ],
            'Tags': [
                {'Key': 'Project', 'Value': self.settings.app_name},
                {'Key': 'ManagedBy', 'Value': 'frontend-deploy'},
            ],
        }
        if template.capabilities:
            stack_kwargs['Capabilities'] = list(template.capabilities)
        return stack_kwargs

    def _wait(self, stack_name: str, waiter_name: str) -> None:
        waiter = self.cf_client.get_waiter(waiter_name)
        try:
            waiter.wait(StackName=stack_name, WaiterConfig=self.waiter_config)
        except WaiterError as e:
            failed_events = self.get_failed_events(stack_name)
            for event in failed_events:
                logger.error(
                    f"  {event.get('LogicalResourceId')} {event.get('ResourceStatus')}: "
                    f"{event.get('ResourceStatusReason')}"
                )
            raise StackDeploymentError(
                stack_name, f"{waiter_name} did not succeed: {e}", failed_events
            ) from e


def equivalent_command(template: StackTemplate, template_file: str, region: str) -> str:
    """The aws CLI invocation that performs the same stack deployment."""
    parts = [
        "aws", "cloudformation", "deploy",
        "--stack-name", template.stack_name,
        "--template-file", template_file,
        "--region", region,
    ]
    if template.parameters:
        parts.append("--parameter-overrides")
        parts.extend(f"{key}={value}" for key, value in template.parameters.items())
    if template.capabilities:
        parts.append("--capabilities")
        parts.extend(template.capabilities)
    return shlex.join(parts)
