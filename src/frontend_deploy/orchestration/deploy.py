"""AWS ECS deployment of the containerized front-end.

Runs the fixed sequence: registry stack, registry login, docker build,
docker tag, docker push, service stack. Steps run one after another and the
first failure stops the run.
"""
import functools
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from frontend_deploy.aws.registry import DockerCLI, RegistryClient
from frontend_deploy.aws.stacks import StackDeployer, equivalent_command
from frontend_deploy.errors import ConfigurationError
from frontend_deploy.infrastructure.templates import (
    REGISTRY_TEMPLATE_FILE,
    SERVICE_TEMPLATE_FILE,
    registry_stack,
    service_stack,
)
from frontend_deploy.settings import Settings, get_settings
from frontend_deploy.state.deployment_state import (
    DeploymentStateManager,
    DeploymentStep,
    create_deployment_id,
)

logger = logging.getLogger(__name__)

BUILD_STEPS = (
    DeploymentStep.REGISTRY_LOGIN,
    DeploymentStep.BUILD_IMAGE,
    DeploymentStep.TAG_IMAGE,
    DeploymentStep.PUSH_IMAGE,
)


def log_operation(description: str):
    """Decorator for timing and logging deployment operations."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger.info(f"Starting: {description}")
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                duration = time.time() - start_time
                logger.info(f"Completed: {description} in {duration:.2f}s")
                return result
            except Exception as e:
                duration = time.time() - start_time
                logger.error(f"Failed: {description} after {duration:.2f}s - {str(e)}")
                raise
        return wrapper
    return decorator


@dataclass
class PlannedStep:
    """One entry of the deployment sequence."""
    step: DeploymentStep
    description: str
    command: str
    action: Callable[[], Optional[Dict[str, Any]]]
    skip_reason: Optional[str] = None


class FrontendDeployment:
    """Builds the image, provisions both stacks and records progress."""

    def __init__(self, settings: Optional[Settings] = None,
                 skip_build: bool = False,
                 infrastructure_only: bool = False,
                 dry_run: bool = False,
                 deployer: Optional[StackDeployer] = None,
                 registry: Optional[RegistryClient] = None,
                 docker: Optional[DockerCLI] = None,
                 state_manager: Optional[DeploymentStateManager] = None):
        self.settings = settings or get_settings()
        self.skip_build = skip_build
        self.infrastructure_only = infrastructure_only
        self.dry_run = dry_run
        self.docker = docker or DockerCLI(dry_run=dry_run)
        self.state_manager = state_manager or DeploymentStateManager(self.settings.state_file)
        self._deployer = deployer
        self._registry = registry

        self.registry_outputs: Dict[str, str] = {}
        self.service_outputs: Dict[str, str] = {}
        self.image_uri: Optional[str] = None
        self.deployed_image: Optional[str] = None

    # AWS clients are only created when a step actually needs them, so
    # plan and dry-run work without credentials.
    @property
    def deployer(self) -> StackDeployer:
        if self._deployer is None:
            self._deployer = StackDeployer()
        return self._deployer

    @property
    def registry(self) -> RegistryClient:
        if self._registry is None:
            self._registry = RegistryClient(docker=self.docker)
        return self._registry

    @property
    def mock_mode(self) -> bool:
        return self.settings.deployment_mode == "aws-mock"

    def _template_path(self, filename: str) -> str:
        return str(Path(self.settings.template_dir) / filename)

    def _planned_image_uri(self) -> str:
        if self.image_uri:
            return self.image_uri
        if self.settings.aws_account_id or self.settings.deployment_mode == "aws-mock":
            return self.settings.image_uri
        return (f"<account-id>.dkr.ecr.{self.settings.aws_region}.amazonaws.com/"
                f"{self.settings.resolved_repository_name}:{self.settings.image_tag}")

    def _dockerfile_path(self) -> str:
        return str(Path(self.settings.build_context) / self.settings.dockerfile)

    def build_plan(self) -> List[PlannedStep]:
        """The fixed, ordered deployment sequence."""
        s = self.settings
        image_uri = self._planned_image_uri()
        registry_host = image_uri.split('/')[0]

        plan = [
            PlannedStep(
                step=DeploymentStep.PROVISION_REGISTRY,
                description="Deploy the registry stack (image repository and cluster)",
                command=equivalent_command(
                    registry_stack(s), self._template_path(REGISTRY_TEMPLATE_FILE), s.aws_region
                ),
                action=self.provision_registry,
            ),
            PlannedStep(
                step=DeploymentStep.REGISTRY_LOGIN,
                description="Authenticate docker against the image registry",
                command=(f"aws ecr get-login-password --region {s.aws_region} | "
                         f"docker login --username AWS --password-stdin {registry_host}"),
                action=self.registry_login,
            ),
            PlannedStep(
                step=DeploymentStep.BUILD_IMAGE,
                description="Build the front-end image",
                command=(f"docker build --platform linux/amd64 -t {s.local_image_name} "
                         f"-f {self._dockerfile_path()} {s.build_context}"),
                action=self.build_image,
            ),
            PlannedStep(
                step=DeploymentStep.TAG_IMAGE,
                description="Tag the image with the repository URI",
                command=f"docker tag {s.local_image_name} {image_uri}",
                action=self.tag_image,
            ),
            PlannedStep(
                step=DeploymentStep.PUSH_IMAGE,
                description="Push the image to the repository",
                command=f"docker push {image_uri}",
                action=self.push_image,
            ),
            PlannedStep(
                step=DeploymentStep.PROVISION_SERVICE,
                description="Deploy the service stack (task definition and service)",
                command=equivalent_command(
                    service_stack(s, image_uri), self._template_path(SERVICE_TEMPLATE_FILE), s.aws_region
                ),
                action=self.provision_service,
            ),
        ]

        for planned in plan:
            if self.infrastructure_only and planned.step != DeploymentStep.PROVISION_REGISTRY:
                planned.skip_reason = "infrastructure only"
            elif self.mock_mode and planned.step in BUILD_STEPS:
                planned.skip_reason = "no image registry in mock mode"
            elif self.skip_build and planned.step in BUILD_STEPS:
                planned.skip_reason = f"reusing pushed tag {s.image_tag}"

        return plan

    def describe_plan(self) -> List[str]:
        """Equivalent shell commands of every step that would run."""
        return [planned.command for planned in self.build_plan() if not planned.skip_reason]

    @log_operation("Front-end deployment")
    def run(self) -> Dict[str, Any]:
        """Execute the plan in order, stopping at the first failing step."""
        plan = self.build_plan()

        if self.dry_run:
            for planned in plan:
                if planned.skip_reason:
                    logger.info(f"[dry-run] skip {planned.step.value}: {planned.skip_reason}")
                else:
                    logger.info(f"[dry-run] {planned.step.value}: {planned.command}")
            return {
                "status": "dry-run",
                "mode": self.settings.deployment_mode,
                "commands": [p.command for p in plan if not p.skip_reason],
            }

        # Fail before building anything if the service stack cannot be deployed
        if not self.infrastructure_only:
            self.settings.require_network()

        deployment_id = create_deployment_id(self.settings.deployment_mode)
        self.state_manager.start_deployment(
            deployment_id, self.settings.deployment_mode, [p.step for p in plan]
        )

        for planned in plan:
            if planned.skip_reason:
                self.state_manager.skip_step(planned.step, planned.skip_reason)
                continue

            self.state_manager.start_step(planned.step)
            try:
                resources = planned.action()
            except Exception as e:
                self.state_manager.fail_step(planned.step, str(e))
                raise
            self.state_manager.complete_step(planned.step, resources)

        self.state_manager.complete_deployment()
        return self._summary(deployment_id)

    def _summary(self, deployment_id: str) -> Dict[str, Any]:
        summary = {
            "status": "success",
            "deployment_id": deployment_id,
            "mode": self.settings.deployment_mode,
            "region": self.settings.aws_region,
            "cluster_name": self.registry_outputs.get("ClusterName", self.settings.resolved_cluster_name),
            "repository_uri": self.registry_outputs.get("RepositoryUri"),
            "image_uri": self.image_uri,
            "registry_stack": self.registry_outputs,
        }
        if not self.infrastructure_only:
            summary["deployed_image"] = self.deployed_image
            summary["service_name"] = self.service_outputs.get("ServiceName", self.settings.resolved_service_name)
            summary["service_stack"] = self.service_outputs
            if "LoadBalancerDns" in self.service_outputs:
                summary["url"] = f"http://{self.service_outputs['LoadBalancerDns']}"
        return summary

    @log_operation("Registry stack deployment")
    def provision_registry(self) -> Dict[str, Any]:
        self.registry_outputs = self.deployer.deploy(registry_stack(self.settings))

        repository_uri = self.registry_outputs.get("RepositoryUri") or self.registry.repository_uri()
        if not repository_uri:
            raise ConfigurationError(
                f"Registry stack did not produce a repository for {self.settings.resolved_repository_name}"
            )
        self.image_uri = f"{repository_uri}:{self.settings.image_tag}"
        logger.info(f"Image will be pushed to {self.image_uri}")
        return {"outputs": self.registry_outputs, "image_uri": self.image_uri}

    @log_operation("Registry login")
    def registry_login(self) -> Dict[str, Any]:
        endpoint = self.registry.login()
        return {"registry": endpoint}

    @log_operation("Image build")
    def build_image(self) -> Dict[str, Any]:
        self.docker.build(
            self.settings.build_context,
            self.settings.local_image_name,
            dockerfile=self.settings.dockerfile,
        )
        return {"local_image": self.settings.local_image_name}

    @log_operation("Image tag")
    def tag_image(self) -> Dict[str, Any]:
        self.docker.tag(self.settings.local_image_name, self.image_uri)
        return {"image_uri": self.image_uri}

    @log_operation("Image push")
    def push_image(self) -> Dict[str, Any]:
        self.docker.push(self.image_uri)
        return {"image_uri": self.image_uri}

    @log_operation("Service stack deployment")
    def provision_service(self) -> Dict[str, Any]:
        self.settings.require_network()

        self.deployed_image = self._resolve_deployed_image()
        self.service_outputs = self.deployer.deploy(service_stack(self.settings, self.deployed_image))
        return {"outputs": self.service_outputs, "image": self.deployed_image}

    def _resolve_deployed_image(self) -> str:
        """Pin the service to the pushed digest so a rebuilt tag still rolls out."""
        if self.mock_mode:
            logger.info("Skipping image digest lookup for mock mode")
            return self.image_uri

        tag = self.settings.image_tag
        if self.skip_build and not self.registry.image_exists(tag):
            raise ConfigurationError(
                f"Image tag {tag} not found in {self.registry.repository_name}; "
                f"run without --skip-build first"
            )

        digest = self.registry.image_digest(tag)
        if not digest:
            logger.warning(f"No digest found for tag {tag}, deploying by tag")
            return self.image_uri
        repository_uri = self.image_uri.rsplit(':', 1)[0]
        return f"{repository_uri}@{digest}"

    @log_operation("Image build and push")
    def build_and_push(self) -> str:
        """Steps 2-5 only, against an already provisioned repository."""
        if self.mock_mode and not self.dry_run:
            logger.info("Skipping image build and push for mock mode")
            return self._planned_image_uri()

        if self.dry_run:
            self.image_uri = self._planned_image_uri()
        else:
            repository_uri = self.registry.repository_uri()
            if not repository_uri:
                raise ConfigurationError(
                    f"Repository {self.registry.repository_name} does not exist; deploy the registry stack first"
                )
            self.image_uri = f"{repository_uri}:{self.settings.image_tag}"

        if not self.dry_run:
            self.registry_login()
        self.build_image()
        self.tag_image()
        self.push_image()
        return self.image_uri

    @log_operation("Front-end teardown")
    def destroy(self, keep_registry: bool = False) -> Dict[str, Any]:
        """Delete the stacks in reverse order of creation."""
        result: Dict[str, Any] = {
            "service_stack_deleted": self.deployer.delete(self.settings.service_stack_name),
        }

        if keep_registry:
            logger.info(f"Keeping registry stack {self.settings.registry_stack_name}")
            result["registry_stack_deleted"] = False
            return result

        # CloudFormation refuses to delete a repository that still holds images
        result["images_purged"] = self.registry.purge_images()
        result["registry_stack_deleted"] = self.deployer.delete(self.settings.registry_stack_name)
        return result
