# src/agentcrate/archive.py
"""
Tar archives exchanged with the daemon.

The daemon's archive endpoints speak tar in both directions: uploads
(``put_archive``) extract a tar stream into a container directory, and
downloads (``get_archive``) return a tar stream of a container path.
These helpers build and unpack those streams for snapshot workspaces and
the ``cp`` verb.
"""

import fnmatch
import io
import logging
import os
import tarfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterable

from .exceptions import InvalidArgumentsError

logger = logging.getLogger(__name__)


def is_ignored(relative: str, patterns: list[str]) -> bool:
    """
    Match a relative POSIX path against gitignore-style glob patterns.

    A pattern matches the full relative path, or any single component of
    it; a trailing slash is ignored.
    """
    parts = relative.split("/")
    for raw in patterns:
        pattern = raw.strip().rstrip("/")
        if not pattern or pattern.startswith("#"):
            continue
        anchored = pattern.startswith("/")
        pattern = pattern.lstrip("/")
        if fnmatch.fnmatch(relative, pattern):
            return True
        if not anchored and "/" not in pattern and any(fnmatch.fnmatch(p, pattern) for p in parts):
            return True
    return False


def tar_directory(root: Path, ignore: list[str] | None = None) -> bytes:
    """
    Archive the contents of ``root`` (not ``root`` itself).

    Symlinks are stored as links; ignored directories are not descended.
    """
    ignore = ignore or []
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = Path(dirpath).relative_to(root).as_posix()
            kept = []
            for dirname in sorted(dirnames):
                rel = dirname if rel_dir == "." else f"{rel_dir}/{dirname}"
                if not is_ignored(rel, ignore):
                    kept.append(dirname)
                    tar.add(os.path.join(dirpath, dirname), arcname=rel, recursive=False)
            dirnames[:] = kept
            for filename in sorted(filenames):
                rel = filename if rel_dir == "." else f"{rel_dir}/{filename}"
                if not is_ignored(rel, ignore):
                    tar.add(os.path.join(dirpath, filename), arcname=rel, recursive=False)
    data = buf.getvalue()
    logger.debug(f"Archived {root} ({len(data)} bytes)")
    return data


def tar_path(source: Path, arcname: str) -> bytes:
    """Archive a host file or directory under a single top-level name."""
    if not source.exists():
        raise InvalidArgumentsError(f"{source} does not exist")
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        tar.add(str(source), arcname=arcname)
    return buf.getvalue()


def upload_target(container_path: str, source_name: str) -> tuple[str, str]:
    """
    Split a container destination into (directory to extract into, arcname).

    ``/dst/`` keeps the source name inside ``/dst``; ``/dst/name`` renames
    the copy to ``name`` inside ``/dst``.
    """
    if container_path.endswith("/"):
        return container_path.rstrip("/") or "/", source_name
    target = PurePosixPath(container_path)
    return str(target.parent), target.name


def extract_to_host(chunks: Iterable[bytes], destination: Path) -> list[str]:
    """
    Unpack a downloaded tar stream on the host.

    If ``destination`` is an existing directory the archive is extracted
    into it; otherwise the archive's top-level entry is renamed to
    ``destination``.

    Returns:
        Names of the extracted members
    """
    buf = io.BytesIO(b"".join(chunks))
    with tarfile.open(fileobj=buf, mode="r") as tar:
        members = tar.getmembers()
        if not members:
            return []
        if destination.is_dir():
            tar.extractall(destination, filter="data")
            return [m.name for m in members]

        top = members[0].name.split("/")[0]
        renamed = []
        for member in members:
            rest = member.name[len(top):].lstrip("/")
            member.name = f"{destination.name}/{rest}" if rest else destination.name
            renamed.append(member)
        destination.parent.mkdir(parents=True, exist_ok=True)
        tar.extractall(destination.parent, members=renamed, filter="data")
        return [m.name for m in renamed]


def copy_stream(chunks: Iterable[bytes], out: BinaryIO) -> int:
    """Write a tar stream as-is (``cp CONTAINER:/path -``)."""
    total = 0
    for chunk in chunks:
        out.write(chunk)
        total += len(chunk)
    out.flush()
    return total
