# src/agentcrate/engine/errors.py
"""
Translation of docker SDK exceptions into agentcrate error kinds.

The adapter never lets an opaque SDK error escape: every call site funnels
exceptions through ``classify()``, which inspects the HTTP status code and
the daemon's explanation text.

Mapping:
    transport errors (requests ConnectionError, socket errors,
    DockerException while connecting)              -> DaemonUnavailableError
    404 / docker.errors.NotFound                    -> NotFoundError
    409 "already paused" / "is not paused"          -> AlreadyInStateError
    409 "is not running"                            -> NotRunningError
    409 "already in use" / "already exists"         -> ConflictError
    other 4xx/5xx                                   -> DaemonError
"""

import logging

import docker.errors
import requests.exceptions

from ..exceptions import (
    AgentCrateError,
    AlreadyInStateError,
    ConflictError,
    DaemonError,
    DaemonUnavailableError,
    NotFoundError,
    NotRunningError,
)

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionError,
    FileNotFoundError,
)


def _explanation(error: docker.errors.APIError) -> str:
    explanation = getattr(error, "explanation", None)
    if isinstance(explanation, bytes):
        explanation = explanation.decode("utf-8", errors="replace")
    return (explanation or str(error)).strip()


def classify(
    error: BaseException,
    resource_type: str = "container",
    name: str = "",
) -> AgentCrateError:
    """
    Convert an exception raised by the docker SDK into an AgentCrateError.

    Args:
        error: The exception to classify
        resource_type: Resource the call targeted, for NotFound messages
        name: Identifier the call targeted

    Returns:
        An AgentCrateError instance (never raises)
    """
    if isinstance(error, AgentCrateError):
        return error

    if isinstance(error, _TRANSPORT_ERRORS):
        return DaemonUnavailableError(details={"cause": str(error)})

    if isinstance(error, docker.errors.NotFound):
        return NotFoundError(resource_type, name, details={"daemon": _explanation(error)})

    if isinstance(error, docker.errors.APIError):
        status = getattr(error, "status_code", None)
        text = _explanation(error)
        lowered = text.lower()

        if status == 404 or "no such" in lowered:
            return NotFoundError(resource_type, name, details={"daemon": text})
        if status == 409 or status == 304:
            if "already paused" in lowered or "is not paused" in lowered:
                return AlreadyInStateError(text)
            if "is not running" in lowered or "is paused" in lowered:
                return NotRunningError(name, message=text)
            if "already in use" in lowered or "already exists" in lowered or "conflict" in lowered:
                return ConflictError(text)
        return DaemonError(text, status_code=status)

    if isinstance(error, docker.errors.DockerException):
        text = str(error)
        if "connection" in text.lower() or "fetching server api version" in text.lower():
            return DaemonUnavailableError(details={"cause": text})
        return DaemonError(text)

    if isinstance(error, OSError):
        return DaemonUnavailableError(details={"cause": str(error)})

    logger.debug(f"Unclassified error {type(error).__name__}: {error}")
    return DaemonError(str(error) or type(error).__name__)
