# tests/cli/test_commands.py
"""
Tests for the command handlers.

Handlers are called with a CommandContext built around the mocked SDK
client, an in-memory formatter and in-memory host streams.
"""

import io
import json
from argparse import Namespace

import pytest

from agentcrate.cli import container as container_module
from agentcrate.cli.container import _shift_agent_operand, parse_env, parse_labels
from agentcrate.cli.context import CommandContext
from agentcrate.cli.main import create_parser, parse_args
from agentcrate.cli.output import OutputFormatter
from agentcrate.engine import naming
from agentcrate.exceptions import (
    BatchError,
    CancelledError,
    ConfigError,
    ConflictError,
    DaemonError,
    InvalidArgumentsError,
    NotFoundError,
    ProjectRequiredError,
)
from agentcrate.stream.attach import StreamIO


_DEFAULT = object()


class PipedStdin(io.BytesIO):
    def isatty(self) -> bool:
        return False


class Result:
    def __init__(self, code: int, out: str, err: str):
        self.code = code
        self.out = out
        self.err = err


@pytest.fixture
def run_command(daemon, project, host_io):
    """Parse ``argv`` and call its handler; errors propagate."""

    def _run(argv, project_config=_DEFAULT, stdin: str = "", streams: StreamIO | None = None) -> Result:
        args = parse_args(create_parser(), argv)
        out, err = io.StringIO(), io.StringIO()
        ctx = CommandContext(
            args,
            cancellation=daemon.cancellation,
            formatter=OutputFormatter(stdout=out, stderr=err),
            io=streams or host_io,
            client=daemon,
            project=project if project_config is _DEFAULT else project_config,
            stdin=io.StringIO(stdin),
        )
        code = args.handler(args, ctx)
        return Result(code, out.getvalue(), err.getvalue())

    return _run


class TestArgumentHelpers:

    def test_parse_env(self, monkeypatch):
        monkeypatch.setenv("AGENTCRATE_TEST_TOKEN", "secret")
        monkeypatch.delenv("AGENTCRATE_TEST_MISSING", raising=False)
        env = parse_env(["A=1", "B=", "AGENTCRATE_TEST_TOKEN", "AGENTCRATE_TEST_MISSING"])
        assert env == {"A": "1", "B": "", "AGENTCRATE_TEST_TOKEN": "secret"}

    def test_parse_env_rejects_empty_key(self):
        with pytest.raises(InvalidArgumentsError):
            parse_env(["=value"])

    def test_parse_labels(self):
        assert parse_labels(["team=core", "flag"]) == {"team": "core", "flag": ""}

    def test_shift_agent_operand(self):
        args = Namespace(agent="w", container="ls", command=["-la"])
        _shift_agent_operand(args, "container", "command")
        assert args.container is None
        assert args.command == ["ls", "-la"]

    def test_no_shift_without_agent(self):
        args = Namespace(agent=None, container="box", command=["ls"])
        _shift_agent_operand(args, "container", "command")
        assert args.container == "box"


class TestList:
    """Tests for ps / container list."""

    def test_running_by_default(self, run_command, docker_client):
        run_command(["ps"])
        assert docker_client.api.containers.call_args.kwargs["all"] is False

    def test_quiet(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        assert run_command(["ps", "-q"]).out == "a" * 12 + "\n"

    def test_json(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", state="exited")]
        rows = json.loads(run_command(["ps", "-a", "--format", "json"]).out)
        assert rows[0]["name"] == "agentcrate.demo.a"
        assert rows[0]["project"] == "demo"
        assert rows[0]["agent"] == "a"
        assert rows[0]["state"] == "exited"

    def test_empty_with_all(self, run_command):
        result = run_command(["container", "ls", "-a"])
        assert result.out == ""
        assert result.err == "No agentcrate containers found.\n"

    def test_project_filter(self, run_command, docker_client):
        run_command(["ps", "-p", "other"])
        labels = docker_client.api.containers.call_args.kwargs["filters"]["label"]
        assert f"{naming.LABEL_PROJECT}=other" in labels


class TestBatchVerbs:
    """Tests for stop, kill, rename and rm through their handlers."""

    def test_stop_agent(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        result = run_command(["stop", "--agent", "a", "-t", "3"])
        assert result.code == 0
        assert result.out == "agentcrate.demo.a\n"
        docker_client.api.stop.assert_called_once_with("a" * 64, timeout=3)

    def test_stop_agent_without_project(self, run_command):
        with pytest.raises(ProjectRequiredError):
            run_command(["stop", "--agent", "a"], project_config=None)

    def test_stop_missing(self, run_command):
        with pytest.raises(NotFoundError):
            run_command(["stop", "box"])

    def test_stop_missing_ignored(self, run_command):
        result = run_command(["stop", "--ignore-missing", "box"])
        assert result.code == 0
        assert result.out == ""

    def test_no_targets(self, run_command):
        with pytest.raises(InvalidArgumentsError):
            run_command(["container", "pause"])

    def test_kill_signal(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("box", container_id="b" * 64, project=None)]
        run_command(["container", "kill", "-s", "hup", "box"])
        docker_client.api.kill.assert_called_once_with("b" * 64, signal="SIGHUP")

    def test_rename_with_agent(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        run_command(["container", "rename", "--agent", "a", "reviewer"])
        docker_client.api.rename.assert_called_once_with("a" * 64, "reviewer")

    def test_rm_partial_failure(self, run_command, docker_client, make_container, api_error):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        docker_client.api.inspect_volume.side_effect = api_error(404, "no such volume", not_found=True)
        with pytest.raises(BatchError) as exc_info:
            run_command(["rm", "agentcrate.demo.a", "ghost"])
        assert [target for target, _ in exc_info.value.failures] == ["ghost"]
        docker_client.api.remove_container.assert_called_once()


class TestInformational:

    def test_inspect_partial(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        docker_client.api.inspect_container.return_value = {"Id": "a" * 64}
        with pytest.raises(BatchError):
            run_command(["container", "inspect", "agentcrate.demo.a", "ghost"])

    def test_inspect_single_missing(self, run_command):
        with pytest.raises(NotFoundError):
            run_command(["container", "inspect", "ghost"])

    def test_inspect_prints_list(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        docker_client.api.inspect_container.return_value = {"Id": "a" * 64}
        result = run_command(["container", "inspect", "--agent", "a"])
        assert json.loads(result.out) == [{"Id": "a" * 64}]

    def test_top(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        docker_client.api.top.return_value = {"Titles": ["PID", "CMD"], "Processes": [["1", "sleep 10"]]}
        result = run_command(["container", "top", "--agent", "a", "--", "aux"])
        assert result.out.splitlines() == ["PID  CMD", "1    sleep 10"]
        docker_client.api.top.assert_called_once_with("a" * 64, ps_args="aux")


class TestResourceLimits:
    """Tests for stats and update."""

    SAMPLE = {
        "memory_stats": {"usage": 2_000_000, "limit": 8_000_000},
        "networks": {"eth0": {"rx_bytes": 1500, "tx_bytes": 0}},
        "pids_stats": {"current": 4},
    }

    def test_stats_once(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        docker_client.api.stats.return_value = self.SAMPLE
        lines = run_command(["container", "stats", "--no-stream", "--agent", "a"]).out.splitlines()

        assert lines[0].split()[:3] == ["CONTAINER", "ID", "NAME"]
        assert lines[1].split() == [
            "a" * 12, "agentcrate.demo.a", "0.00%", "2MB", "/", "8MB", "25.00%",
            "1.5kB", "/", "0B", "0B", "/", "0B", "4",
        ]
        docker_client.api.stats.assert_called_once_with("a" * 64, stream=False)

    def test_stats_nothing_running(self, run_command):
        result = run_command(["container", "stats", "--no-stream"])
        assert result.code == 0
        assert result.err == "No running agentcrate containers found.\n"

    def test_stats_all_running(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [
            make_container("agentcrate.demo.a", container_id="a" * 64),
            make_container("agentcrate.other.b", container_id="b" * 64, project="other"),
        ]
        docker_client.api.stats.return_value = self.SAMPLE
        result = run_command(["container", "stats", "--no-stream", "--no-trunc"])
        assert [line.split()[0] for line in result.out.splitlines()[1:]] == ["a" * 64, "b" * 64]
        assert docker_client.api.containers.call_args.kwargs["all"] is False

    def test_stats_stream_until_cancelled(self, run_command, daemon, docker_client, make_container, monkeypatch):
        monkeypatch.setattr(container_module, "STATS_INTERVAL", 0)
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        calls = []

        def _stats(container_id, stream):
            calls.append(container_id)
            if len(calls) == 2:
                daemon.cancellation.cancel("SIGINT")
            return self.SAMPLE

        docker_client.api.stats.side_effect = _stats
        with pytest.raises(CancelledError):
            run_command(["container", "stats", "--agent", "a"])
        assert len(calls) == 2

    def test_stats_missing_target(self, run_command):
        with pytest.raises(NotFoundError):
            run_command(["container", "stats", "--no-stream", "ghost"])

    def test_update(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", container_id="a" * 64)]
        docker_client.api._result.return_value = {"Warnings": []}
        result = run_command(
            ["container", "update", "--agent", "a", "-m", "512m", "--cpus", "1.5", "--restart", "on-failure:3"]
        )
        assert result.out == "agentcrate.demo.a\n"
        assert docker_client.api._post_json.call_args.kwargs["data"] == {
            "NanoCpus": 1_500_000_000,
            "Memory": 512 * 1024 * 1024,
            "RestartPolicy": {"Name": "on-failure", "MaximumRetryCount": 3},
        }

    def test_update_without_flags(self, run_command, docker_client):
        with pytest.raises(InvalidArgumentsError, match="at least one flag"):
            run_command(["container", "update", "box"])
        docker_client.api._post_json.assert_not_called()


class TestExec:

    def test_requires_command(self, run_command):
        with pytest.raises(InvalidArgumentsError, match="exec needs a command"):
            run_command(["exec", "--agent", "w"])


class TestCopy:
    """Tests for cp in both directions."""

    @pytest.fixture
    def box(self, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("box", container_id="b" * 64, project=None)]
        return "b" * 64

    def test_container_to_stdout(self, run_command, docker_client, host_io, box):
        docker_client.api.get_archive.return_value = (iter([b"tar-", b"bytes"]), {"name": "hosts"})
        run_command(["cp", "box:/etc/hosts", "-"])
        docker_client.api.get_archive.assert_called_once_with(box, "/etc/hosts")
        assert host_io.stdout.getvalue() == b"tar-bytes"

    def test_stdin_to_container(self, run_command, docker_client, box):
        streams = StreamIO(stdin=PipedStdin(b"archive"), stdout=io.BytesIO(), stderr=io.BytesIO())
        run_command(["cp", "-", "box:/tmp"], streams=streams)
        docker_client.api.put_archive.assert_called_once_with(box, "/tmp", b"archive")

    def test_host_file_to_container(self, run_command, docker_client, box, tmp_path):
        source = tmp_path / "notes.txt"
        source.write_text("hello")
        run_command(["cp", str(source), "box:/workspace/"])
        container_id, directory, data = docker_client.api.put_archive.call_args.args
        assert (container_id, directory) == (box, "/workspace")
        assert isinstance(data, bytes) and data

    def test_rejected_put(self, run_command, docker_client, box):
        docker_client.api.put_archive.return_value = False
        streams = StreamIO(stdin=PipedStdin(b"archive"), stdout=io.BytesIO(), stderr=io.BytesIO())
        with pytest.raises(DaemonError, match="failed"):
            run_command(["cp", "-", "box:/tmp"], streams=streams)


class TestProjectCommands:
    """Tests for init, down and prune."""

    def test_init(self, run_command, tmp_path):
        target = tmp_path / "My Project"
        target.mkdir()
        result = run_command(["init", str(target), "--image", "alpine:3.19"])
        path = target / "agentcrate.toml"
        assert result.out == f"{path}\n"
        text = path.read_text()
        assert 'project = "my-project"' in text
        assert 'image = "alpine:3.19"' in text

    def test_init_existing(self, run_command, tmp_path):
        run_command(["init", str(tmp_path)])
        with pytest.raises(ConfigError):
            run_command(["init", str(tmp_path)])
        assert run_command(["init", "-f", str(tmp_path)]).code == 0

    def test_init_not_a_directory(self, run_command, tmp_path):
        with pytest.raises(InvalidArgumentsError):
            run_command(["init", str(tmp_path / "missing")])

    def test_down_all_needs_clean(self, run_command):
        with pytest.raises(InvalidArgumentsError, match="--clean"):
            run_command(["down", "--all"])

    def test_down_without_project(self, run_command):
        with pytest.raises(ProjectRequiredError):
            run_command(["down"], project_config=None)

    def test_down_stops_running(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [
            make_container("agentcrate.demo.a", container_id="a" * 64, state="running"),
            make_container("agentcrate.demo.b", container_id="b" * 64, state="exited"),
        ]
        result = run_command(["down"])
        assert result.out == "agentcrate.demo.a\n"
        docker_client.api.stop.assert_called_once()
        docker_client.api.remove_container.assert_not_called()

    def test_prune_all_declined(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", state="exited")]
        result = run_command(["prune", "--all"], stdin="n\n")
        assert result.code == 0
        assert "This will remove 1 container(s), 0 image(s), 0 volume(s)" in result.err
        assert result.err.endswith("Aborted.\n")
        docker_client.api.remove_container.assert_not_called()

    def test_prune_all_forced(self, run_command, docker_client, make_container):
        docker_client.api.containers.return_value = [
            make_container("agentcrate.demo.a", state="exited", SizeRw=1500),
        ]
        docker_client.api.inspect_network.return_value = {"Labels": {}, "Containers": {}}
        result = run_command(["prune", "-a", "-f"])
        assert result.code == 0
        assert result.out.splitlines() == ["agentcrate.demo.a", "Removed 1 resource(s), reclaimed 1.5kB"]

    def test_prune_json(self, run_command):
        data = json.loads(run_command(["prune", "--format", "json"]).out)
        assert data["removed"] == 0
        assert data["failures"] == []

    def test_prune_failure_exit_code(self, run_command, docker_client, make_container, api_error):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", state="exited")]
        docker_client.api.remove_container.side_effect = api_error(500, "device busy")
        assert run_command(["prune"]).code == 1


class TestResources:
    """Tests for image, volume and network commands."""

    def test_volume_list(self, run_command, docker_client, make_volume):
        docker_client.api.volumes.return_value = {
            "Volumes": [make_volume("agentcrate.demo.a-config", purpose="config")]
        }
        lines = run_command(["volume", "ls"]).out.splitlines()
        assert lines[0].split() == ["NAME", "PROJECT", "AGENT", "PURPOSE", "CREATED"]
        assert lines[1].split()[:4] == ["agentcrate.demo.a-config", "demo", "a", "config"]

    def test_volume_rm_refuses_unmanaged(self, run_command, docker_client):
        docker_client.api.inspect_volume.return_value = {"Name": "data", "Labels": {}}
        with pytest.raises(InvalidArgumentsError, match="not managed"):
            run_command(["volume", "rm", "data"])
        docker_client.api.remove_volume.assert_not_called()

    def test_volume_rm(self, run_command, docker_client):
        docker_client.api.inspect_volume.return_value = {"Name": "v", "Labels": naming.labels("demo", "a")}
        assert run_command(["volume", "rm", "v"]).out == "v\n"
        docker_client.api.remove_volume.assert_called_once_with("v", force=False)

    def test_image_list(self, run_command, docker_client):
        labels = naming.labels("demo")
        labels[naming.LABEL_VERSION] = "latest"
        docker_client.api.images.return_value = [
            {"Id": "sha256:" + "d" * 64, "RepoTags": ["agentcrate-demo:latest"], "Labels": labels,
             "Created": 1_700_000_000, "Size": 2_000_000},
        ]
        lines = run_command(["image", "ls"]).out.splitlines()
        assert lines[1].split()[:4] == ["agentcrate-demo:latest", "demo", "latest", "d" * 12]
        assert lines[1].endswith("2MB")

    def test_network_rm_in_use(self, run_command, docker_client):
        docker_client.api.inspect_network.return_value = {
            "Labels": naming.labels(""),
            "Containers": {"a" * 64: {"Name": "agentcrate.demo.a"}},
        }
        with pytest.raises(ConflictError) as exc_info:
            run_command(["network", "rm"])
        assert exc_info.value.details["containers"] == ["agentcrate.demo.a"]
        docker_client.api.remove_network.assert_not_called()

    def test_network_rm_default(self, run_command, docker_client):
        docker_client.api.inspect_network.return_value = {"Labels": naming.labels(""), "Containers": {}}
        assert run_command(["network", "rm"]).out == f"{naming.NETWORK_NAME}\n"
        docker_client.api.remove_network.assert_called_once_with(naming.NETWORK_NAME)
