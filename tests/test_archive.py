# tests/test_archive.py
"""
Tests for tar helpers used by snapshot workspaces and cp.
"""

import io
import tarfile

import pytest

from agentcrate.archive import (
    copy_stream,
    extract_to_host,
    is_ignored,
    tar_directory,
    tar_path,
    upload_target,
)
from agentcrate.exceptions import InvalidArgumentsError


def member_names(data: bytes) -> list[str]:
    with tarfile.open(fileobj=io.BytesIO(data)) as tar:
        return sorted(tar.getnames())


class TestIsIgnored:

    @pytest.mark.parametrize(
        "path,patterns,expected",
        [
            (".git", [".git"], True),
            ("src/.git/config", [".git"], True),
            ("node_modules/x.js", ["node_modules/"], True),
            ("build/out.o", ["*.o"], True),
            ("docs/build", ["/build"], False),
            ("build", ["/build"], True),
            ("src/main.py", ["# comment", ""], False),
            ("src/main.py", ["src/*.py"], True),
        ],
    )
    def test_patterns(self, path, patterns, expected):
        assert is_ignored(path, patterns) is expected


class TestTarDirectory:

    def test_contents_without_root(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "main.py").write_text("print('hi')\n")
        (tmp_path / "README").write_text("readme\n")
        assert member_names(tar_directory(tmp_path)) == ["README", "src", "src/main.py"]

    def test_ignored_directories_not_descended(self, tmp_path):
        (tmp_path / ".git" / "objects").mkdir(parents=True)
        (tmp_path / ".git" / "HEAD").write_text("ref\n")
        (tmp_path / "keep.txt").write_text("x")
        assert member_names(tar_directory(tmp_path, [".git"])) == ["keep.txt"]


class TestTarPath:

    def test_single_file(self, tmp_path):
        source = tmp_path / "f.txt"
        source.write_text("data")
        assert member_names(tar_path(source, "renamed.txt")) == ["renamed.txt"]

    def test_missing_source(self, tmp_path):
        with pytest.raises(InvalidArgumentsError, match="does not exist"):
            tar_path(tmp_path / "missing", "missing")


class TestUploadTarget:

    def test_directory_destination(self):
        assert upload_target("/workspace/", "f.txt") == ("/workspace", "f.txt")

    def test_root_directory(self):
        assert upload_target("/", "f.txt") == ("/", "f.txt")

    def test_renaming_destination(self):
        assert upload_target("/workspace/g.txt", "f.txt") == ("/workspace", "g.txt")


class TestExtractToHost:

    def _archive(self, tmp_path) -> bytes:
        source = tmp_path / "src" / "conf"
        source.mkdir(parents=True)
        (source / "a.txt").write_text("A")
        return tar_path(source, "conf")

    def test_into_existing_directory(self, tmp_path):
        data = self._archive(tmp_path)
        out = tmp_path / "out"
        out.mkdir()
        extract_to_host([data], out)
        assert (out / "conf" / "a.txt").read_text() == "A"

    def test_rename_top_level(self, tmp_path):
        data = self._archive(tmp_path)
        destination = tmp_path / "copied"
        extract_to_host([data[:100], data[100:]], destination)
        assert (destination / "a.txt").read_text() == "A"

    def test_empty_archive(self, tmp_path):
        buf = io.BytesIO()
        tarfile.open(fileobj=buf, mode="w").close()
        assert extract_to_host([buf.getvalue()], tmp_path / "x") == []


def test_copy_stream():
    out = io.BytesIO()
    assert copy_stream([b"ab", b"cd"], out) == 4
    assert out.getvalue() == b"abcd"
