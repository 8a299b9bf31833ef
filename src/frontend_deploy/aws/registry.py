"""ECR authentication and docker build/tag/push for the front-end image."""
import base64
import logging
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

from frontend_deploy.aws.utils import get_ecr_client
from frontend_deploy.errors import DockerNotAvailableError, ImageBuildError, RegistryAuthError
from frontend_deploy.settings import get_settings

logger = logging.getLogger(__name__)


class DockerCLI:
    """Thin wrapper around the docker command line.

    With ``dry_run`` the commands are recorded in ``history`` but never run.
    """

    def __init__(self, executable: str = "docker", dry_run: bool = False):
        self.executable = executable
        self.dry_run = dry_run
        self.history: List[List[str]] = []

    def ensure_available(self) -> None:
        if self.dry_run:
            return
        if shutil.which(self.executable) is None:
            raise DockerNotAvailableError(
                f"'{self.executable}' was not found on PATH; install Docker to build images"
            )

    def run(self, args: List[str], input_text: Optional[str] = None) -> None:
        command = [self.executable] + args
        self.history.append(command)
        # Never log the password piped to docker login
        logger.info(f"$ {shlex.join(command)}")
        if self.dry_run:
            return

        self.ensure_available()
        try:
            subprocess.run(
                command,
                input=input_text.encode() if input_text is not None else None,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise ImageBuildError(command, e.returncode) from e

    def login(self, username: str, password: str, registry: str) -> None:
        self.run(["login", "--username", username, "--password-stdin", registry],
                 input_text=password)

    def build(self, context: str, tag: str, dockerfile: Optional[str] = None,
              platform: str = "linux/amd64") -> None:
        args = ["build", "--platform", platform, "-t", tag]
        if dockerfile:
            args.extend(["-f", str(Path(context) / dockerfile)])
        args.append(context)
        self.run(args)

    def tag(self, source: str, target: str) -> None:
        self.run(["tag", source, target])

    def push(self, target: str) -> None:
        self.run(["push", target])


class RegistryClient:
    """Authentication against and maintenance of the ECR repository."""

    def __init__(self, repository_name: Optional[str] = None, ecr_client=None,
                 docker: Optional[DockerCLI] = None):
        self.settings = get_settings()
        self.repository_name = repository_name or self.settings.resolved_repository_name
        self.ecr_client = ecr_client or get_ecr_client()
        self.docker = docker or DockerCLI()

    def get_credentials(self) -> Dict[str, str]:
        """Decode the ECR authorization token into username/password/endpoint."""
        try:
            token_response = self.ecr_client.get_authorization_token()
        except ClientError as e:
            raise RegistryAuthError(f"Could not obtain ECR authorization token: {e}") from e

        auth_data = token_response.get('authorizationData') or []
        if not auth_data:
            raise RegistryAuthError("ECR returned no authorization data")

        token_data = auth_data[0]
        token = base64.b64decode(token_data['authorizationToken']).decode('utf-8')
        username, _, password = token.partition(':')
        if not password:
            raise RegistryAuthError("Malformed ECR authorization token")

        return {
            'username': username,
            'password': password,
            'endpoint': token_data['proxyEndpoint'],
        }

    def login(self) -> str:
        """docker login to the registry, returning the registry endpoint."""
        credentials = self.get_credentials()
        try:
            self.docker.login(credentials['username'], credentials['password'], credentials['endpoint'])
        except ImageBuildError as e:
            raise RegistryAuthError(f"docker login to {credentials['endpoint']} was rejected: {e}") from e
        logger.info(f"Logged in to {credentials['endpoint']}")
        return credentials['endpoint']

    def repository_uri(self) -> Optional[str]:
        try:
            response = self.ecr_client.describe_repositories(repositoryNames=[self.repository_name])
        except self.ecr_client.exceptions.RepositoryNotFoundException:
            return None
        return response['repositories'][0]['repositoryUri']

    def image_digest(self, tag: str) -> Optional[str]:
        """Digest of the image currently carrying `tag`, or None."""
        try:
            response = self.ecr_client.describe_images(
                repositoryName=self.repository_name,
                imageIds=[{'imageTag': tag}]
            )
        except (self.ecr_client.exceptions.ImageNotFoundException,
                self.ecr_client.exceptions.RepositoryNotFoundException):
            return None
        details = response.get('imageDetails') or []
        return details[0].get('imageDigest') if details else None

    def image_exists(self, tag: str) -> bool:
        return self.image_digest(tag) is not None

    def purge_images(self) -> int:
        """Delete every image so CloudFormation can remove the repository."""
        image_ids = []
        try:
            paginator = self.ecr_client.get_paginator('list_images')
            for page in paginator.paginate(repositoryName=self.repository_name):
                image_ids.extend(page.get('imageIds', []))
        except self.ecr_client.exceptions.RepositoryNotFoundException:
            logger.info(f"Repository {self.repository_name} not found, nothing to purge")
            return 0

        deleted = 0
        # batch_delete_image accepts at most 100 ids per call
        for start in range(0, len(image_ids), 100):
            batch = image_ids[start:start + 100]
            response = self.ecr_client.batch_delete_image(
                repositoryName=self.repository_name,
                imageIds=batch
            )
            deleted += len(response.get('imageIds', []))
            for failure in response.get('failures', []):
                logger.warning(f"Could not delete image {failure.get('imageId')}: {failure.get('failureReason')}")

        logger.info(f"Purged {deleted} images from {self.repository_name}")
        return deleted
