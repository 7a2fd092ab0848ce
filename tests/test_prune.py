# tests/test_prune.py
"""
Tests for the prune engine.
"""

import io
import os
import signal
import threading

import pytest

from agentcrate.engine import naming
from agentcrate.engine.cancel import Cancellation, install_signal_handlers
from agentcrate.exceptions import CancelledError
from agentcrate.prune import PruneEngine, PruneReport, confirm, is_dangling

MANAGED = f"{naming.LABEL_MANAGED}=true"


@pytest.fixture
def engine(daemon):
    return PruneEngine(daemon)


def image_row(image_id: str, tags=None, size: int = 100) -> dict:
    return {"Id": image_id, "RepoTags": tags, "Size": size, "Labels": naming.labels("demo")}


class TestConfirm:

    @pytest.mark.parametrize("answer,expected", [("y\n", True), ("YES\n", True), ("n\n", False), ("\n", False)])
    def test_answers(self, answer, expected):
        stderr = io.StringIO()
        assert confirm("Remove?", io.StringIO(answer), stderr) is expected
        assert stderr.getvalue().startswith("Remove? [y/N] ")

    def test_eof_is_no(self):
        assert confirm("Remove?", io.StringIO(""), io.StringIO()) is False

    def test_answer_on_pipe_with_cancellation(self):
        read_fd, write_fd = os.pipe()
        os.write(write_fd, b"y\n")
        with os.fdopen(read_fd, "r") as stdin:
            try:
                assert confirm("Remove?", stdin, io.StringIO(), Cancellation()) is True
            finally:
                os.close(write_fd)

    def test_sigint_aborts_prompt(self):
        """Ctrl-C while waiting ends the prompt even if an answer arrives later."""
        cancellation = Cancellation()
        read_fd, write_fd = os.pipe()
        interrupt = threading.Timer(
            0.2, signal.pthread_kill, args=(threading.main_thread().ident, signal.SIGINT)
        )
        late_answer = threading.Timer(1.5, os.write, args=(write_fd, b"y\n"))
        stderr = io.StringIO()
        with os.fdopen(read_fd, "r") as stdin:
            try:
                with install_signal_handlers(cancellation):
                    interrupt.start()
                    late_answer.start()
                    with pytest.raises(CancelledError, match="SIGINT"):
                        confirm("Remove?", stdin, stderr, cancellation)
            finally:
                interrupt.join()
                late_answer.cancel()
                late_answer.join()
                os.close(write_fd)
        assert stderr.getvalue() == "Remove? [y/N] \n"

    def test_already_cancelled(self):
        cancellation = Cancellation()
        cancellation.cancel("SIGTERM")
        with pytest.raises(CancelledError):
            confirm("Remove?", io.StringIO("y\n"), io.StringIO(), cancellation)


class TestIsDangling:

    def test_untagged(self):
        assert is_dangling({"RepoTags": None})
        assert is_dangling({"RepoTags": ["<none>:<none>"]})

    def test_tagged(self):
        assert not is_dangling({"RepoTags": ["agentcrate-demo:latest"]})


class TestPlan:
    """Tests for selection without removal."""

    def test_dangling_mode_filters(self, engine, docker_client):
        engine.plan()
        container_filters = docker_client.api.containers.call_args.kwargs["filters"]
        assert container_filters["status"] == "exited"
        assert MANAGED in container_filters["label"]
        image_filters = docker_client.api.images.call_args.kwargs["filters"]
        assert image_filters["dangling"] == "true"
        docker_client.api.volumes.assert_not_called()

    def test_dangling_skips_tagged_images(self, engine, docker_client):
        docker_client.api.images.return_value = [
            image_row("sha256:aaa", None),
            image_row("sha256:bbb", ["agentcrate-demo:latest"]),
        ]
        assert [i["Id"] for i in engine.plan()["images"]] == ["sha256:aaa"]

    def test_all_mode_skips_active_containers(self, engine, docker_client, make_container, make_volume):
        docker_client.api.containers.return_value = [
            make_container("agentcrate.demo.a", state="running"),
            make_container("agentcrate.demo.b", state="paused"),
            make_container("agentcrate.demo.c", state="exited", SizeRw=10),
            make_container("agentcrate.demo.d", state="created"),
        ]
        docker_client.api.volumes.return_value = {"Volumes": [make_volume("agentcrate.demo.c-config")]}
        plan = engine.plan(all_=True)
        assert [c["Name"] for c in plan["containers"]] == ["agentcrate.demo.c", "agentcrate.demo.d"]
        assert plan["containers"][0]["Size"] == 10
        assert [v["Name"] for v in plan["volumes"]] == ["agentcrate.demo.c-config"]
        assert "status" not in docker_client.api.containers.call_args.kwargs["filters"]

    def test_project_scope(self, daemon, docker_client):
        PruneEngine(daemon, project="demo").plan(all_=True)
        labels = docker_client.api.volumes.call_args.kwargs["filters"]["label"]
        assert f"{naming.LABEL_PROJECT}=demo" in labels


class TestPrune:
    """Tests for removal and reporting."""

    def test_order_and_reclaimed(self, engine, docker_client, make_container, make_volume):
        calls = []
        docker_client.api.remove_container.side_effect = lambda *a, **k: calls.append("container")
        docker_client.api.remove_image.side_effect = lambda *a, **k: calls.append("image") or []
        docker_client.api.remove_volume.side_effect = lambda *a, **k: calls.append("volume")
        docker_client.api.remove_network.side_effect = lambda *a, **k: calls.append("network")
        docker_client.api.containers.return_value = [
            make_container("agentcrate.demo.a", state="exited", SizeRw=1000),
        ]
        docker_client.api.images.return_value = [image_row("sha256:" + "a" * 64, ["agentcrate-demo:latest"], 5000)]
        docker_client.api.volumes.return_value = {"Volumes": [make_volume("agentcrate.demo.a-config")]}
        docker_client.api.df.return_value = {"Volumes": [{"Name": "agentcrate.demo.a-config", "UsageData": {"Size": 300}}]}
        docker_client.api.inspect_network.return_value = {"Labels": naming.labels(""), "Containers": {}}

        report = engine.prune(all_=True)

        assert calls == ["container", "image", "volume", "network"]
        assert report.containers == ["agentcrate.demo.a"]
        assert report.volumes == ["agentcrate.demo.a-config"]
        assert report.networks == [naming.NETWORK_NAME]
        assert report.reclaimed == 6300
        assert report.removed == 4

    def test_network_in_use_is_kept(self, engine, docker_client):
        docker_client.api.inspect_network.return_value = {
            "Labels": naming.labels(""),
            "Containers": {"abc": {}},
        }
        report = engine.prune(all_=True)
        assert report.networks == []
        docker_client.api.remove_network.assert_not_called()

    def test_foreign_network_is_kept(self, engine, docker_client):
        docker_client.api.inspect_network.return_value = {"Labels": {}, "Containers": {}}
        engine.prune(all_=True)
        docker_client.api.remove_network.assert_not_called()

    def test_network_untouched_in_dangling_mode(self, engine, docker_client):
        engine.prune()
        docker_client.api.inspect_network.assert_not_called()

    def test_network_untouched_with_project(self, daemon, docker_client):
        PruneEngine(daemon, project="demo").prune(all_=True)
        docker_client.api.inspect_network.assert_not_called()

    def test_failures_do_not_stop_batch(self, engine, docker_client, make_container, api_error):
        docker_client.api.containers.return_value = [
            make_container("agentcrate.demo.a", state="exited", container_id="a" * 64),
            make_container("agentcrate.demo.b", state="exited", container_id="b" * 64),
        ]
        docker_client.api.remove_container.side_effect = [api_error(500, "device busy"), None]
        report = engine.prune()
        assert report.containers == ["agentcrate.demo.b"]
        assert report.failures == [("agentcrate.demo.a", "device busy")]

    def test_already_gone_is_skipped(self, engine, docker_client, make_container, api_error):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", state="exited")]
        docker_client.api.remove_container.side_effect = api_error(404, "No such container", not_found=True)
        report = engine.prune()
        assert report.removed == 0
        assert report.failures == []

    def test_cancelled(self, engine, docker_client, make_container, cancellation):
        docker_client.api.containers.return_value = [make_container("agentcrate.demo.a", state="exited")]
        cancellation.cancel("SIGINT")
        with pytest.raises(CancelledError):
            engine.prune()


def test_report_to_dict():
    report = PruneReport(containers=["a"], reclaimed=10, failures=[("b", "busy")])
    data = report.to_dict()
    assert data["removed"] == 1
    assert data["reclaimed_bytes"] == 10
    assert data["failures"] == [{"resource": "b", "error": "busy"}]
