# tests/conftest.py
"""
Shared fixtures for agentcrate tests.

Provides:
    - A MagicMock standing in for ``docker.DockerClient`` (no daemon needed)
    - Factories for daemon API rows (containers, volumes, images)
    - Project configurations rooted in temporary directories
    - Docker availability detection for the few integration tests
"""

import io
import sys
from pathlib import Path
from unittest.mock import MagicMock

import docker.errors
import pytest

# Add source to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agentcrate.config.models import ProjectConfig  # noqa: E402
from agentcrate.engine import naming  # noqa: E402
from agentcrate.engine.cancel import Cancellation  # noqa: E402
from agentcrate.engine.client import DaemonClient  # noqa: E402
from agentcrate.stream.attach import StreamIO  # noqa: E402


# ==============================================================================
# Docker Availability
# ==============================================================================

def is_docker_available() -> bool:
    """Check if Docker is available for testing."""
    try:
        import docker
        client = docker.from_env()
        client.ping()
        return True
    except Exception:
        return False


# Skip marker for tests requiring Docker
requires_docker = pytest.mark.skipif(
    not is_docker_available(),
    reason="Docker not available"
)


# ==============================================================================
# Docker SDK mocks
# ==============================================================================

def make_api_error(status: int, explanation: str, not_found: bool = False) -> docker.errors.APIError:
    """Build an APIError carrying an HTTP status, as the SDK raises them."""
    response = MagicMock()
    response.status_code = status
    response.reason = "error"
    response.url = "http+docker://localhost/v1.43/test"
    cls = docker.errors.NotFound if not_found else docker.errors.APIError
    return cls("daemon error", response=response, explanation=explanation)


@pytest.fixture
def api_error():
    return make_api_error


@pytest.fixture
def docker_client():
    """A MagicMock ``docker.DockerClient`` with empty listings."""
    client = MagicMock()
    api = client.api
    api.containers.return_value = []
    api.volumes.return_value = {"Volumes": []}
    api.images.return_value = []
    api.networks.return_value = []
    api.df.return_value = {"Volumes": []}
    api.create_container.return_value = {"Id": "c" * 64, "Warnings": []}
    api.create_host_config.side_effect = lambda **kwargs: dict(kwargs)
    api.put_archive.return_value = True
    return client


@pytest.fixture
def cancellation():
    return Cancellation()


@pytest.fixture
def daemon(docker_client, cancellation):
    """DaemonClient wrapping the mocked SDK client."""
    return DaemonClient(client=docker_client, cancellation=cancellation)


@pytest.fixture
def make_container():
    """Factory for a row of the daemon's container listing."""

    def _make(
        name: str,
        container_id: str | None = None,
        state: str = "running",
        project: str | None = "demo",
        agent: str | None = None,
        managed: bool = True,
        **extra,
    ) -> dict:
        parsed = naming.parse_container_name(name)
        if agent is None and parsed:
            agent = parsed[1]
        labels = naming.labels(project or "", agent) if managed else {}
        row = {
            "Id": container_id or (format(abs(hash(name)), "x") * 8)[:64].ljust(64, "0"),
            "Names": [f"/{name}"],
            "Image": "alpine:3.19",
            "State": state,
            "Status": "Up 2 minutes" if state == "running" else "Exited (0) 1 minute ago",
            "Created": 1_700_000_000,
            "Labels": labels,
        }
        row.update(extra)
        return row

    return _make


@pytest.fixture
def make_volume():
    """Factory for a row of the daemon's volume listing."""

    def _make(
        name: str,
        project: str = "demo",
        agent: str | None = "a",
        managed: bool = True,
        purpose: str | None = None,
    ) -> dict:
        labels = naming.labels(project, agent) if managed else {}
        if purpose:
            labels[naming.LABEL_PURPOSE] = purpose
        return {"Name": name, "Driver": "local", "Labels": labels, "CreatedAt": "2024-01-02T03:04:05Z"}

    return _make


# ==============================================================================
# Projects and host streams
# ==============================================================================

@pytest.fixture
def project(tmp_path) -> ProjectConfig:
    """A project named ``demo`` rooted in a temporary directory."""
    return ProjectConfig(project="demo", image="alpine:3.19", root=tmp_path)


class FakeStdin(io.BytesIO):
    """Non-terminal binary stdin."""

    def isatty(self) -> bool:
        return False


@pytest.fixture
def host_io():
    """In-memory host streams for attach/exec/logs sessions."""
    return StreamIO(stdin=FakeStdin(b""), stdout=io.BytesIO(), stderr=io.BytesIO())
