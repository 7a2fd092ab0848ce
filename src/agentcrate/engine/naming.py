# src/agentcrate/engine/naming.py
"""
Canonical names and labels for managed resources.

Pure functions, no I/O. Every managed resource is identified twice: by
its name (cosmetic, human friendly) and by its labels (authoritative).

Naming scheme:
    container:  agentcrate.<project>.<agent>
    volume:     agentcrate.<project>.<agent>-<purpose>
    image:      agentcrate-<project>:<tag>
    network:    agentcrate-net

Labels (namespace ``dev.agentcrate``):
    dev.agentcrate.managed = "true"      (every managed resource)
    dev.agentcrate.project = <project>
    dev.agentcrate.agent   = <agent>     (containers and volumes)
    dev.agentcrate.version = <version>   (images)
"""

import random
import re
from dataclasses import dataclass
from enum import Enum

from ..exceptions import InvalidArgumentsError

PROGRAM = "agentcrate"
LABEL_NAMESPACE = "dev.agentcrate"

LABEL_MANAGED = f"{LABEL_NAMESPACE}.managed"
LABEL_PROJECT = f"{LABEL_NAMESPACE}.project"
LABEL_AGENT = f"{LABEL_NAMESPACE}.agent"
LABEL_VERSION = f"{LABEL_NAMESPACE}.version"
LABEL_IMAGE = f"{LABEL_NAMESPACE}.image"
LABEL_WORKDIR = f"{LABEL_NAMESPACE}.workdir"
LABEL_CREATED = f"{LABEL_NAMESPACE}.created"
LABEL_PURPOSE = f"{LABEL_NAMESPACE}.purpose"

MANAGED_VALUE = "true"

NETWORK_NAME = f"{PROGRAM}-net"

VOLUME_PURPOSES = ("workspace", "config", "history")

_RESOURCE_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
_PROJECT_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,62}$")
_CONTAINER_ID_RE = re.compile(r"^[0-9a-f]{6,64}$")

_ADJECTIVES = [
    "brave", "calm", "clever", "eager", "focused", "gentle", "happy", "jolly",
    "keen", "lucid", "modest", "nifty", "quirky", "serene", "sharp", "swift",
    "vibrant", "wise", "zealous", "bold",
]
_NOUNS = [
    "babbage", "curie", "dijkstra", "euler", "feynman", "gauss", "hopper",
    "knuth", "lamport", "lovelace", "noether", "pascal", "ritchie", "shannon",
    "tesla", "turing", "wozniak", "hypatia", "kepler", "liskov",
]


class VolumePurpose(str, Enum):
    """Purpose suffix of a managed volume."""

    WORKSPACE = "workspace"
    CONFIG = "config"
    HISTORY = "history"


def validate_resource_name(name: str, what: str = "name") -> str:
    """
    Validate a name component against the daemon's container name rules.

    Raises:
        InvalidArgumentsError: If the name is empty, too long or malformed
    """
    if not name:
        raise InvalidArgumentsError(f"{what} cannot be empty")
    if len(name) > 128:
        raise InvalidArgumentsError(f"{what} is too long ({len(name)} characters, maximum 128)")
    if not _RESOURCE_NAME_RE.match(name):
        if name.startswith("-"):
            raise InvalidArgumentsError(f"invalid {what} {name!r}: cannot start with a hyphen")
        raise InvalidArgumentsError(
            f"invalid {what} {name!r}: only [a-zA-Z0-9][a-zA-Z0-9_.-] are allowed"
        )
    return name


def normalize_project_name(name: str) -> str:
    """Lowercase a project name and validate it."""
    normalized = (name or "").strip().lower()
    if not _PROJECT_NAME_RE.match(normalized):
        raise InvalidArgumentsError(
            f"invalid project name {name!r}: must match [a-z0-9][a-z0-9_-]{{0,62}}"
        )
    return normalized


def validate_agent_name(agent: str) -> str:
    """Agents share the project character class, without the lowercase step."""
    if not agent or not _PROJECT_NAME_RE.match(agent):
        raise InvalidArgumentsError(
            f"invalid agent name {agent!r}: must match [a-z0-9][a-z0-9_-]{{0,62}}"
        )
    return agent


def generate_agent_name() -> str:
    """Generate a random ``adjective-noun`` agent name."""
    return f"{random.choice(_ADJECTIVES)}-{random.choice(_NOUNS)}"


def container_name(project: str, agent: str) -> str:
    """
    Canonical container name ``agentcrate.<project>.<agent>``.

    With an empty project the name degrades to ``agentcrate.<agent>``.
    """
    validate_resource_name(agent, "agent name")
    if project:
        validate_resource_name(project, "project name")
        return f"{PROGRAM}.{project}.{agent}"
    return f"{PROGRAM}.{agent}"


def container_name_prefix(project: str = "") -> str:
    """Prefix shared by every canonical name of a project."""
    return f"{PROGRAM}.{project}." if project else f"{PROGRAM}."


def parse_container_name(name: str) -> tuple[str, str] | None:
    """
    Recover ``(project, agent)`` from a canonical container name.

    Returns None when the name is not canonical. A leading slash, as
    reported by the daemon, is ignored.
    """
    parts = name.lstrip("/").split(".")
    if len(parts) == 3 and parts[0] == PROGRAM:
        return parts[1], parts[2]
    if len(parts) == 2 and parts[0] == PROGRAM:
        return "", parts[1]
    return None


def volume_name(container: str, purpose: str) -> str:
    """Managed volume name ``<container>-<purpose>``."""
    return f"{container.lstrip('/')}-{purpose}"


def agent_volume_names(container: str) -> list[str]:
    """All managed volume names owned by a container, in purpose order."""
    return [volume_name(container, purpose) for purpose in VOLUME_PURPOSES]


def image_repository(project: str) -> str:
    return f"{PROGRAM}-{project}" if project else PROGRAM


def image_ref(project: str, tag: str = "latest") -> str:
    """Managed image reference ``agentcrate-<project>:<tag>``."""
    return f"{image_repository(project)}:{tag}"


def is_container_id(value: str) -> bool:
    """True for a lowercase hex string of at least six characters."""
    return bool(_CONTAINER_ID_RE.match(value))


def labels(project: str, agent: str | None = None, version: str | None = None) -> dict[str, str]:
    """
    Canonical label map for a managed resource.

    Always includes the managed label; project, agent and version are
    added when provided.
    """
    result = {LABEL_MANAGED: MANAGED_VALUE}
    if project:
        result[LABEL_PROJECT] = project
    if agent:
        result[LABEL_AGENT] = agent
    if version:
        result[LABEL_VERSION] = version
    return result


def is_managed(resource_labels: dict[str, str] | None) -> bool:
    """True when a label map carries ``managed=true``."""
    return (resource_labels or {}).get(LABEL_MANAGED) == MANAGED_VALUE


def merge_labels(user_labels: dict[str, str] | None, managed: dict[str, str]) -> dict[str, str]:
    """Merge user labels with managed labels; managed labels always win."""
    merged = dict(user_labels or {})
    merged.update(managed)
    return merged


@dataclass(frozen=True)
class ContainerPath:
    """
    One operand of a copy operation.

    Attributes:
        container: Container name, or "" for a host path or a deferred agent
        path: Path inside the container, or on the host ("-" means stdio)
        is_container: Whether the path lives inside a container
    """

    container: str
    path: str
    is_container: bool

    @property
    def is_stdio(self) -> bool:
        return not self.is_container and self.path == "-"

    @property
    def agent_deferred(self) -> bool:
        return self.is_container and not self.container


def parse_container_path(spec: str) -> ContainerPath:
    """
    Parse a copy operand.

    Syntaxes:
        ``name:/abs``  path inside container ``name``
        ``:/abs``      path inside the container of the current agent
        ``path``       host path; ``-`` means stdin/stdout

    Host paths that merely contain a colon after a slash (``./a:b``) are
    treated as host paths.
    """
    if spec == "-":
        return ContainerPath("", "-", False)
    if spec.startswith(":"):
        return ContainerPath("", spec[1:], True)
    if ":" in spec:
        container, path = spec.split(":", 1)
        if "/" not in container and "\\" not in container:
            return ContainerPath(container, path, True)
    return ContainerPath("", spec, False)
