import base64
import json
import subprocess
from unittest.mock import MagicMock

import boto3
import pytest

from frontend_deploy.aws.registry import DockerCLI, RegistryClient
from frontend_deploy.errors import DockerNotAvailableError, ImageBuildError, RegistryAuthError
from tests.consts import TEST_APP_NAME, TEST_REGION

REPO_NAME = f"{TEST_APP_NAME}-repo"
MANIFEST = json.dumps({
    "schemaVersion": 2,
    "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
    "config": {"digest": "sha256:abc"},
})


@pytest.fixture
def repository(mocked_aws):
    ecr = boto3.client('ecr', region_name=TEST_REGION)
    ecr.create_repository(repositoryName=REPO_NAME)
    return ecr


def test_dry_run_records_commands():
    docker = DockerCLI(dry_run=True)

    docker.build("app", "demo:latest", dockerfile="Dockerfile")
    docker.tag("demo:latest", "registry/demo:latest")
    docker.push("registry/demo:latest")

    assert docker.history == [
        ["docker", "build", "--platform", "linux/amd64", "-t", "demo:latest", "-f", "app/Dockerfile", "app"],
        ["docker", "tag", "demo:latest", "registry/demo:latest"],
        ["docker", "push", "registry/demo:latest"],
    ]


def test_login_pipes_password_on_stdin(monkeypatch):
    run = MagicMock()
    monkeypatch.setattr("frontend_deploy.aws.registry.shutil.which", lambda name: "/usr/bin/docker")
    monkeypatch.setattr("frontend_deploy.aws.registry.subprocess.run", run)

    DockerCLI().login("AWS", "s3cret", "https://registry")

    args, kwargs = run.call_args
    assert args[0] == ["docker", "login", "--username", "AWS", "--password-stdin", "https://registry"]
    assert "s3cret" not in args[0]
    assert kwargs["input"] == b"s3cret"
    assert kwargs["check"] is True


def test_failed_command_raises_image_build_error(monkeypatch):
    def failing_run(command, **kwargs):
        raise subprocess.CalledProcessError(2, command)

    monkeypatch.setattr("frontend_deploy.aws.registry.shutil.which", lambda name: "/usr/bin/docker")
    monkeypatch.setattr("frontend_deploy.aws.registry.subprocess.run", failing_run)

    with pytest.raises(ImageBuildError) as excinfo:
        DockerCLI().push("registry/demo:latest")

    assert excinfo.value.returncode == 2
    assert excinfo.value.command == ["docker", "push", "registry/demo:latest"]


def test_missing_docker_binary(monkeypatch):
    monkeypatch.setattr("frontend_deploy.aws.registry.shutil.which", lambda name: None)

    with pytest.raises(DockerNotAvailableError):
        DockerCLI().tag("a", "b")


def test_registry_login_uses_ecr_token(repository):
    docker = DockerCLI(dry_run=True)

    endpoint = RegistryClient(docker=docker).login()

    command = docker.history[0]
    assert command[:5] == ["docker", "login", "--username", "AWS", "--password-stdin"]
    assert command[-1] == endpoint
    assert endpoint.startswith("https://")


def test_empty_authorization_data():
    ecr_client = MagicMock()
    ecr_client.get_authorization_token.return_value = {'authorizationData': []}

    with pytest.raises(RegistryAuthError):
        RegistryClient(ecr_client=ecr_client).get_credentials()


def test_repository_uri(repository):
    client = RegistryClient()
    assert client.repository_uri().endswith(f"/{REPO_NAME}")
    assert RegistryClient(repository_name="missing").repository_uri() is None


def test_image_exists_and_purge(repository):
    repository.put_image(repositoryName=REPO_NAME, imageManifest=MANIFEST, imageTag="v1")
    client = RegistryClient()

    assert client.image_exists("v1") is True
    assert client.image_exists("v2") is False

    assert client.purge_images() == 1
    assert repository.list_images(repositoryName=REPO_NAME)['imageIds'] == []


def test_purge_missing_repository(mocked_aws):
    assert RegistryClient(repository_name="missing").purge_images() == 0


def test_image_digest_follows_the_tag(repository):
    client = RegistryClient()
    assert client.image_digest("latest") is None

    repository.put_image(repositoryName=REPO_NAME, imageManifest=MANIFEST, imageTag="latest")
    first = client.image_digest("latest")

    rebuilt = json.dumps({**json.loads(MANIFEST), "config": {"digest": "sha256:def"}})
    repository.put_image(repositoryName=REPO_NAME, imageManifest=rebuilt, imageTag="latest")
    second = client.image_digest("latest")

    assert first.startswith("sha256:")
    assert second.startswith("sha256:")
    assert first != second


def test_rejected_docker_login_is_an_auth_error():
    ecr_client = MagicMock()
    ecr_client.get_authorization_token.return_value = {
        'authorizationData': [{
            'authorizationToken': base64.b64encode(b"AWS:s3cret").decode(),
            'proxyEndpoint': "https://registry",
        }]
    }
    docker = MagicMock()
    docker.login.side_effect = ImageBuildError(["docker", "login"], 1)

    with pytest.raises(RegistryAuthError, match="rejected"):
        RegistryClient(ecr_client=ecr_client, docker=docker).login()
