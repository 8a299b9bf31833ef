# src/frontend_deploy/settings.py
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from frontend_deploy.errors import ConfigurationError

logger = logging.getLogger(__name__)

VALID_DEPLOYMENT_MODES = ["aws-mock", "aws-prod"]

MOCK_ACCOUNT_ID = "123456789012"

# Fargate CPU units -> allowed memory sizes (MiB)
FARGATE_CPU_MEMORY: Dict[str, List[int]] = {
    "256": [512, 1024, 2048],
    "512": list(range(1024, 4096 + 1, 1024)),
    "1024": list(range(2048, 8192 + 1, 1024)),
    "2048": list(range(4096, 16384 + 1, 1024)),
    "4096": list(range(8192, 30720 + 1, 1024)),
    "8192": list(range(16384, 61440 + 1, 4096)),
    "16384": list(range(32768, 122880 + 1, 8192)),
}


class Settings(BaseSettings):
    """
    Single source of truth for deployment settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from frontend_deploy.settings import get_settings
        settings = get_settings()
        cluster = settings.cluster_name
    """

    # Application Settings
    app_name: str = Field(
        default="frontend-app",
        description="Application name, used as prefix for every AWS resource"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="aws-prod",
        description="Deployment mode: aws-mock (moto server) or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL"
    )

    aws_account_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCOUNT_ID",
        description="AWS Account ID (auto-detected if not provided)"
    )

    # Resource names (derived from app_name when empty)
    repository_name: Optional[str] = Field(default=None, description="ECR repository name")
    cluster_name: Optional[str] = Field(default=None, description="ECS cluster name")
    service_name: Optional[str] = Field(default=None, description="ECS service name")

    # Image build
    image_tag: str = Field(default="latest", description="Tag pushed to the repository")
    build_context: str = Field(default=".", description="Docker build context directory")
    dockerfile: str = Field(default="Dockerfile", description="Dockerfile path relative to the build context")
    node_version: str = Field(default="20", description="Node.js version of the build stage")
    nginx_version: str = Field(default="1.27", description="nginx version of the serve stage")
    install_command: str = Field(default="npm ci")
    build_command: str = Field(default="npm run build")
    build_output_dir: str = Field(default="build", description="Directory the build command writes static files to")

    # Task blueprint
    container_port: int = Field(default=80)
    task_cpu: str = Field(default="256", description="Fargate CPU units")
    task_memory: str = Field(default="512", description="Fargate memory (MiB)")

    # Service
    desired_count: int = Field(default=1)
    vpc_id: Optional[str] = Field(default=None)
    subnet_ids: str = Field(default="", description="Comma separated subnet ids")
    assign_public_ip: bool = Field(default=True)
    load_balancer_enabled: bool = Field(default=False)
    health_check_path: str = Field(default="/")

    # Retention
    log_retention_days: int = Field(default=7)
    image_retention_count: int = Field(default=10)

    # Local files
    template_dir: str = Field(default="infrastructure", description="Where rendered templates are written")
    state_file: str = Field(default=".frontend_deploy_state.json")

    # CloudFormation waiters
    waiter_delay: int = Field(default=15, description="Seconds between stack status polls")
    waiter_max_attempts: int = Field(default=120)

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator('deployment_mode')
    @classmethod
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        if v not in VALID_DEPLOYMENT_MODES:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {VALID_DEPLOYMENT_MODES}")
        return v

    @field_validator('container_port')
    @classmethod
    def validate_container_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError(f"container_port must be between 1 and 65535, got {v}")
        return v

    @field_validator('desired_count')
    @classmethod
    def validate_desired_count(cls, v):
        if v < 0:
            raise ValueError(f"desired_count cannot be negative, got {v}")
        return v

    @model_validator(mode='after')
    def validate_fargate_size(self):
        """Fargate only accepts specific CPU/memory pairs."""
        allowed = FARGATE_CPU_MEMORY.get(self.task_cpu)
        if allowed is None:
            raise ValueError(f"Unsupported task_cpu {self.task_cpu}. Must be one of {list(FARGATE_CPU_MEMORY)}")
        if not self.task_memory.isdigit() or int(self.task_memory) not in allowed:
            raise ValueError(
                f"task_memory {self.task_memory} is not valid for task_cpu {self.task_cpu}. "
                f"Allowed: {allowed}"
            )
        return self

    @model_validator(mode='after')
    def set_mock_defaults(self):
        """Point clients at the local moto server in aws-mock mode."""
        if self.deployment_mode == "aws-mock":
            if self.aws_endpoint_url is None:
                self.aws_endpoint_url = "http://localhost:5000"
            if self.aws_access_key_id is None:
                self.aws_access_key_id = "mock"
            if self.aws_secret_access_key is None:
                self.aws_secret_access_key = "mock"
        return self

    @property
    def project_slug(self) -> str:
        return self.app_name.lower().replace(' ', '-').replace('_', '-')

    @property
    def resolved_repository_name(self) -> str:
        return self.repository_name or f"{self.project_slug}-repo"

    @property
    def resolved_cluster_name(self) -> str:
        return self.cluster_name or f"{self.project_slug}-cluster"

    @property
    def resolved_service_name(self) -> str:
        return self.service_name or f"{self.project_slug}-service"

    @property
    def registry_stack_name(self) -> str:
        return f"{self.project_slug}-registry"

    @property
    def service_stack_name(self) -> str:
        return f"{self.project_slug}-service"

    @property
    def subnet_id_list(self) -> List[str]:
        return [s.strip() for s in self.subnet_ids.split(',') if s.strip()]

    @property
    def local_image_name(self) -> str:
        return f"{self.project_slug}:{self.image_tag}"

    @property
    def account_id(self) -> str:
        """Get AWS account ID with STS auto-detection."""
        if self.aws_account_id:
            return self.aws_account_id

        if self.deployment_mode == "aws-mock":
            return MOCK_ACCOUNT_ID

        from frontend_deploy.aws.utils import get_sts_client
        try:
            return get_sts_client().get_caller_identity()['Account']
        except Exception as e:
            raise ConfigurationError(f"Could not detect AWS account id, set AWS_ACCOUNT_ID: {e}") from e

    @property
    def ecr_registry(self) -> str:
        """Get ECR registry URL."""
        return f"{self.account_id}.dkr.ecr.{self.aws_region}.amazonaws.com"

    @property
    def image_uri(self) -> str:
        return f"{self.ecr_registry}/{self.resolved_repository_name}:{self.image_tag}"

    def require_network(self) -> None:
        """The service stack cannot be deployed without a VPC and subnets."""
        missing = []
        if not self.vpc_id:
            missing.append("VPC_ID")
        if not self.subnet_id_list:
            missing.append("SUBNET_IDS")
        if self.load_balancer_enabled and len(self.subnet_id_list) < 2:
            missing.append("SUBNET_IDS (a load balancer needs two subnets in different AZs)")
        if missing:
            raise ConfigurationError(f"Missing network settings: {', '.join(missing)}")

    def get_environment_dict(self) -> dict:
        """Get configuration as a dictionary suitable for a subprocess environment."""
        env_dict = {
            'APP_NAME': self.app_name,
            'DEPLOYMENT_MODE': self.deployment_mode,
            'AWS_DEFAULT_REGION': self.aws_region,
            'ECR_REPOSITORY_NAME': self.resolved_repository_name,
            'ECS_CLUSTER_NAME': self.resolved_cluster_name,
            'ECS_SERVICE_NAME': self.resolved_service_name,
            'IMAGE_TAG': self.image_tag,
            'LOG_LEVEL': self.log_level,
        }

        if self.deployment_mode == 'aws-mock':
            env_dict.update({
                'AWS_ENDPOINT_URL': self.aws_endpoint_url or '',
                'AWS_ACCESS_KEY_ID': self.aws_access_key_id or 'mock',
                'AWS_SECRET_ACCESS_KEY': self.aws_secret_access_key or 'mock',
            })

        return env_dict

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=(".env", ".env.aws-mock", ".env.aws-prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()


def get_settings_with_env_file(env_file: Optional[str] = None) -> Settings:
    """
    Load an extra .env file into the process environment, then rebuild settings.

    Args:
        env_file: Path to .env file (e.g., '.env.staging')

    Returns:
        Fresh Settings instance
    """
    if env_file:
        env_path = Path(env_file)
        if not env_path.exists():
            raise ConfigurationError(f"Environment file not found: {env_path}")
        load_dotenv(env_path, override=True)
        logger.info(f"Loaded environment from {env_path}")

    get_settings.cache_clear()
    return get_settings()
