# src/agentcrate/resolver.py
"""
Resolution of user-facing identifiers to container names.

Commands accept either ``--agent <A>`` (resolved against the current
project) or positional identifiers (canonical names or ID prefixes), never
both. The resolver turns that input into an ordered list of
``Identifier`` values before any daemon call is made.

Rules, in order:
    1. --agent with any positional identifier -> InvalidArgumentsError
    2. --agent without a project             -> ProjectRequiredError
    3. positional identifiers                -> returned unchanged, in order
    4. nothing at all                        -> InvalidArgumentsError,
                                                unless the verb allows it
"""

from dataclasses import dataclass
from enum import Enum

from .engine import naming
from .engine.naming import ContainerPath
from .exceptions import InvalidArgumentsError, ProjectRequiredError


class IdentifierKind(str, Enum):
    NAME = "name"  # Canonical (or user-chosen) container name
    ID = "id"  # Hex ID prefix, at least 6 digits
    AGENT = "agent"  # Agent name under the current project


@dataclass(frozen=True)
class Identifier:
    """
    A container identifier as given by the user.

    Attributes:
        kind: Which of the three variants this is
        value: The name, ID prefix or agent name
        project: Project the agent belongs to (AGENT only)
    """

    kind: IdentifierKind
    value: str
    project: str = ""

    @classmethod
    def parse(cls, value: str) -> "Identifier":
        """Classify a positional identifier."""
        value = value.strip()
        if not value:
            raise InvalidArgumentsError("container identifier cannot be empty")
        if naming.is_container_id(value):
            return cls(IdentifierKind.ID, value)
        return cls(IdentifierKind.NAME, value.lstrip("/"))

    @classmethod
    def for_agent(cls, project: str, agent: str) -> "Identifier":
        naming.validate_agent_name(agent)
        return cls(IdentifierKind.AGENT, agent, project)

    @property
    def reference(self) -> str:
        """What to look the container up by: canonical name or ID prefix."""
        if self.kind is IdentifierKind.AGENT:
            return naming.container_name(self.project, self.value)
        return self.value

    def __str__(self) -> str:
        return self.reference


class Resolver:
    """
    Resolve ``--agent`` and positional operands for one invocation.

    Args:
        project: Current project name, or None outside a project
    """

    def __init__(self, project: str | None = None):
        self.project = project or None

    def _require_project(self) -> str:
        if not self.project:
            raise ProjectRequiredError()
        return self.project

    def resolve(
        self,
        agent: str | None,
        identifiers: list[str] | None,
        allow_empty: bool = False,
    ) -> list[Identifier]:
        """
        Resolve the targets of a verb.

        Returns:
            Identifiers in input order (empty only when ``allow_empty``)

        Raises:
            InvalidArgumentsError: --agent combined with positionals, or no target
            ProjectRequiredError: --agent outside a project
        """
        identifiers = list(identifiers or [])
        if agent and identifiers:
            raise InvalidArgumentsError(
                "--agent and positional container arguments are mutually exclusive",
                next_steps=["Use either --agent NAME or one or more container names"],
            )
        if agent:
            return [Identifier.for_agent(self._require_project(), agent)]
        if identifiers:
            return [Identifier.parse(value) for value in identifiers]
        if allow_empty:
            return []
        raise InvalidArgumentsError(
            "no container specified",
            next_steps=["Pass a container name, or --agent NAME inside a project"],
        )

    def resolve_one(self, agent: str | None, identifiers: list[str] | None) -> Identifier:
        """Resolve a verb that takes exactly one target."""
        resolved = self.resolve(agent, identifiers)
        if len(resolved) != 1:
            raise InvalidArgumentsError(f"expected exactly one container, got {len(resolved)}")
        return resolved[0]

    def resolve_rename(self, agent: str | None, operands: list[str]) -> tuple[Identifier, str]:
        """
        Resolve ``rename`` operands: ``OLD NEW`` or ``--agent A NEW``.

        Returns:
            (target, new name)
        """
        if agent:
            if len(operands) != 1:
                raise InvalidArgumentsError("rename with --agent takes exactly one operand: NEW_NAME")
            target = Identifier.for_agent(self._require_project(), agent)
            new_name = operands[0]
        else:
            if len(operands) != 2:
                raise InvalidArgumentsError("rename takes exactly two operands: CONTAINER NEW_NAME")
            target = Identifier.parse(operands[0])
            new_name = operands[1]
        naming.validate_resource_name(new_name.lstrip("/"), "container name")
        return target, new_name.lstrip("/")

    def resolve_copy_path(self, agent: str | None, spec: str) -> ContainerPath:
        """
        Parse a copy operand, rewriting ``:path`` to the agent's container.

        Raises:
            InvalidArgumentsError: ``:path`` without --agent, or a named
                container combined with --agent
        """
        path = naming.parse_container_path(spec)
        if path.agent_deferred:
            if not agent:
                raise InvalidArgumentsError(
                    f"{spec!r} refers to the current agent's container but --agent is not set",
                )
            container = naming.container_name(self._require_project(), naming.validate_agent_name(agent))
            return ContainerPath(container, path.path, True)
        if path.is_container and agent:
            raise InvalidArgumentsError(
                "--agent and an explicit container name are mutually exclusive",
                next_steps=["Use ':/path' to refer to the agent's container"],
            )
        return path

    def resolve_copy(self, agent: str | None, source: str, destination: str) -> tuple[ContainerPath, ContainerPath]:
        """
        Resolve both copy operands; exactly one must be inside a container.

        Raises:
            InvalidArgumentsError: Zero or two container operands, or a
                container path that is not absolute
        """
        src = self.resolve_copy_path(agent, source)
        dst = self.resolve_copy_path(agent, destination)
        if src.is_container == dst.is_container:
            raise InvalidArgumentsError(
                "copy needs exactly one container operand",
                next_steps=["Use CONTAINER:/path for the container side, e.g. agentcrate cp ./f :/workspace/"],
            )
        container_side = src if src.is_container else dst
        if not container_side.path.startswith("/"):
            raise InvalidArgumentsError(f"container path {container_side.path!r} must be absolute")
        return src, dst
