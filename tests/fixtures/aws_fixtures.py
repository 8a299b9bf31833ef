"""Settings and AWS fixtures shared by the unit tests."""
import pytest
from moto import mock_aws

from frontend_deploy.aws.utils import AWSClientManager
from frontend_deploy.settings import get_settings
from tests.consts import (
    TEST_ACCOUNT_ID,
    TEST_APP_NAME,
    TEST_REGION,
    TEST_SUBNET_IDS,
    TEST_VPC_ID,
)


@pytest.fixture(autouse=True)
def deploy_env(monkeypatch, tmp_path):
    """Isolated settings: fake credentials, temp state file, no real endpoint."""
    for name in ("AWS_ENDPOINT_URL", "AWS_PROFILE", "AWS_SESSION_TOKEN", "LOAD_BALANCER_ENABLED"):
        monkeypatch.delenv(name, raising=False)

    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_ACCOUNT_ID", TEST_ACCOUNT_ID)
    monkeypatch.setenv("DEPLOYMENT_MODE", "aws-prod")
    monkeypatch.setenv("APP_NAME", TEST_APP_NAME)
    monkeypatch.setenv("VPC_ID", TEST_VPC_ID)
    monkeypatch.setenv("SUBNET_IDS", TEST_SUBNET_IDS)
    monkeypatch.setenv("STATE_FILE", str(tmp_path / "state.json"))
    monkeypatch.setenv("TEMPLATE_DIR", str(tmp_path / "infrastructure"))
    monkeypatch.setenv("BUILD_CONTEXT", str(tmp_path))
    monkeypatch.setenv("WAITER_DELAY", "1")
    monkeypatch.setenv("WAITER_MAX_ATTEMPTS", "5")

    get_settings.cache_clear()
    AWSClientManager.reset()
    yield
    get_settings.cache_clear()
    AWSClientManager.reset()


@pytest.fixture
def mocked_aws():
    """Route every boto3 call in the test to moto."""
    with mock_aws():
        yield


@pytest.fixture
def settings():
    return get_settings()
