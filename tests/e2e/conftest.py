# tests/e2e/conftest.py
"""
Pytest fixtures for the treesync end-to-end tests.

This module sets up the testing environment, including:
- Spinning up a MinIO container through pytest-docker.
- Provisioning a real aiobotocore client against it with `ClientProvisioner`.
- Creating and cleaning up an isolated bucket for each test function.

The whole suite is skipped when no Docker daemon is reachable.
"""

import shutil
import subprocess
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
import requests
from requests.exceptions import ConnectionError

from treesync.config import AppConfig, S3Config
from treesync.provisioner import ClientProvisioner

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

# --- Constants ---
S3_ACCESS_KEY: str = "minio-key"
S3_SECRET_KEY: str = "minio-secret"
S3_REGION: str = "us-east-1"


def _docker_available() -> bool:
    """
    Check whether a Docker daemon answers.

    Returns:
        bool: True if `docker info` succeeds, False otherwise.
    """
    if shutil.which("docker") is None:
        return False
    try:
        return (
            subprocess.run(["docker", "info"], capture_output=True, timeout=15).returncode
            == 0
        )
    except (OSError, subprocess.TimeoutExpired):
        return False


def _is_s3_responsive(url: str) -> bool:
    """
    Check if the MinIO health endpoint is responsive.

    Args:
        url (str): The base URL of the MinIO API.

    Returns:
        bool: True if the service is responsive, False otherwise.
    """
    try:
        # The health check endpoint for MinIO is /minio/health/live
        response: requests.Response = requests.get(f"{url}/minio/health/live")
        return response.status_code == 200
    except ConnectionError:
        return False


# --- Docker Fixtures ---
@pytest.fixture(scope="session")
def docker_compose_file(pytestconfig: pytest.Config) -> str:
    """
    Locate the docker-compose.yml file for the test suite.

    Args:
        pytestconfig (pytest.Config): The pytest configuration object.

    Returns:
        str: The absolute path to the docker-compose.yml file.
    """
    return str(Path(pytestconfig.rootdir) / "tests" / "docker-compose.yml")


@pytest.fixture(scope="session")
def docker_compose_project_name() -> str:
    return "treesync-tests"


@pytest.fixture(scope="session")
def s3_endpoint(request: pytest.FixtureRequest) -> str:
    """
    Ensure the MinIO service is running and return its endpoint URL.

    The pytest-docker fixtures are requested lazily so that nothing is
    started when Docker is missing.

    Args:
        request (pytest.FixtureRequest): The pytest request object.

    Returns:
        str: The MinIO API URL.
    """
    if not _docker_available():
        pytest.skip("Docker is not available")
    docker_ip: str = request.getfixturevalue("docker_ip")
    docker_services: Any = request.getfixturevalue("docker_services")
    port: int = docker_services.port_for("minio", 9000)
    api_url: str = f"http://{docker_ip}:{port}"
    docker_services.wait_until_responsive(
        timeout=30.0, pause=0.1, check=lambda: _is_s3_responsive(api_url)
    )
    return api_url


# --- Application Fixtures ---
@pytest.fixture(scope="function")
def e2e_app_config() -> AppConfig:
    """MinIO ignores canned ACLs, so uploads are private here."""
    return AppConfig(max_concurrency=8, public_read=False)


@pytest_asyncio.fixture(scope="function")
async def s3_client(
    s3_endpoint: str,
    e2e_app_config: AppConfig,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator["S3Client", None]:
    """
    Provision a real client against MinIO through the ambient credential chain.

    Args:
        s3_endpoint (str): The MinIO API URL.
        e2e_app_config (AppConfig): The application settings.
        monkeypatch (pytest.MonkeyPatch): Used to set the AWS credential variables.

    Yields:
        S3Client: The provisioned client.
    """
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", S3_ACCESS_KEY)
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", S3_SECRET_KEY)
    s3_config: S3Config = S3Config(
        region=S3_REGION,
        use_credentials=False,
        profile_name="default",
        endpoint_url=s3_endpoint,
    )
    async with ClientProvisioner(s3_config, e2e_app_config) as client:
        yield client


@pytest_asyncio.fixture(scope="function")
async def e2e_bucket(s3_client: "S3Client") -> AsyncGenerator[str, None]:
    """
    Create a unique, isolated bucket for a single test function.

    Args:
        s3_client (S3Client): The provisioned client.

    Yields:
        str: The bucket name. The bucket and its contents are removed afterwards.
    """
    name: str = f"treesync-{uuid.uuid4()}"
    await s3_client.create_bucket(Bucket=name)

    yield name

    paginator = s3_client.get_paginator("list_objects_v2")
    keys: List[Dict[str, str]] = [
        {"Key": content["Key"]}
        async for page in paginator.paginate(Bucket=name)
        for content in page.get("Contents", [])
    ]
    if keys:
        await s3_client.delete_objects(Bucket=name, Delete={"Objects": keys})
    await s3_client.delete_bucket(Bucket=name)
