"""Tests for the escluster CLI."""

import json
import textwrap

import pytest
from typer.testing import CliRunner

from conftest import FakeAdmin, FakeConnection, FakeProber, FakeWorkloads
from escluster_core.cli import main as cli_main
from escluster_core.context import OperatorContext

runner = CliRunner()

RESOURCE = textwrap.dedent(
    """\
    apiVersion: logging.escluster.io/v1
    kind: Elasticsearch
    metadata:
      name: elasticsearch
      namespace: logging
      uid: 2f9c1d
    spec:
      redundancyPolicy: SingleRedundancy
      image: registry.local/elasticsearch:6.8
      nodes:
        - name: cdm
          roles: [client, data, master]
          nodeCount: 3
          storage:
            size: 20Gi
            storageClassName: gp2
    """
)


@pytest.fixture
def db_env(tmp_path, monkeypatch):
    """Point the CLI at a throwaway state database."""
    monkeypatch.setenv("ESCLUSTER_DB_PATH", str(tmp_path / "state.db"))
    monkeypatch.setenv("ESCLUSTER_CERT_KEY_SIZE", "1024")
    return tmp_path


@pytest.fixture
def resource_file(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text(RESOURCE)
    return path


class TestPlan:
    def test_plan_table(self, db_env, resource_file):
        result = runner.invoke(cli_main.app, ["plan", str(resource_file)])

        assert result.exit_code == 0
        assert "cdm" in result.output
        assert "masters=3 quorum=2" in result.output
        assert "replicas=1" in result.output

    def test_plan_json(self, db_env, resource_file):
        result = runner.invoke(cli_main.app, ["plan", str(resource_file), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["quorum"] == 2
        assert len(data["workloads"]) == 3
        assert data["workloads"][0]["storage"]["size"] == "20Gi"

    def test_plan_invalid_spec(self, db_env, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(RESOURCE.replace("[client, data, master]", "[client, data]"))

        result = runner.invoke(cli_main.app, ["plan", str(path)])

        assert result.exit_code == 1
        assert "master role" in result.output

    def test_plan_missing_file(self, db_env, tmp_path):
        result = runner.invoke(cli_main.app, ["plan", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1
        assert "Cannot load" in result.output


class TestLifecycleCommands:
    """Tests for apply, status and delete."""

    def test_apply_then_status(self, db_env, resource_file):
        applied = runner.invoke(cli_main.app, ["apply", str(resource_file)])
        status = runner.invoke(cli_main.app, ["status", "elasticsearch", "-n", "logging", "--json"])

        assert applied.exit_code == 0
        assert "Applied logging/elasticsearch" in applied.output
        data = json.loads(status.output)
        assert data[0]["cluster"] == "logging/elasticsearch"
        assert data[0]["status"]["phase"] == "Pending"

    def test_status_unknown_cluster(self, db_env):
        result = runner.invoke(cli_main.app, ["status", "ghost", "-n", "logging"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_delete_requests_teardown(self, db_env, resource_file):
        runner.invoke(cli_main.app, ["apply", str(resource_file)])

        result = runner.invoke(cli_main.app, ["delete", "elasticsearch", "-n", "logging"])
        missing = runner.invoke(cli_main.app, ["delete", "ghost", "-n", "logging"])

        assert result.exit_code == 0
        assert "Deletion of logging/elasticsearch requested" in result.output
        assert missing.exit_code == 1


@pytest.fixture
def connection(monkeypatch):
    """Route reconcile passes to a fake, always green cluster."""
    fake = FakeConnection(FakeProber(workloads=FakeWorkloads()), FakeAdmin())

    def fake_context(db, settings, flavor="elasticsearch"):
        return OperatorContext(
            store=db,
            secrets=db,
            workloads=db,
            connect=lambda endpoint, credentials: fake,
            settings=settings,
        )

    monkeypatch.setattr(cli_main, "build_context", fake_context)
    return fake


def pass_lines(output: str) -> list[str]:
    return [line for line in output.splitlines() if line.startswith("pass ")]


class TestReconcileCommand:
    def test_reconcile_passes_until_idle(self, db_env, resource_file, connection):
        """Passes run against a fake cluster connection until idle."""
        runner.invoke(cli_main.app, ["apply", str(resource_file)])

        result = runner.invoke(
            cli_main.app,
            ["reconcile", "elasticsearch", "-n", "logging", "--passes", "20", "--auto-ready"],
        )

        assert result.exit_code == 0
        lines = pass_lines(result.output)
        assert lines[0] == "pass 1: Diffing"
        assert lines[-1].endswith(": Idle")
        assert connection.admin.replicas == [1]

    def test_unknown_flavor(self, db_env):
        result = runner.invoke(cli_main.app, ["reconcile", "elasticsearch", "--flavor", "opensearch"])

        assert result.exit_code == 1
        assert "Unknown flavor 'opensearch'" in result.output


class TestCertsCommands:
    def test_show_before_issue(self, db_env, resource_file):
        result = runner.invoke(cli_main.app, ["certs", "show", "elasticsearch", "-n", "logging", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert {d["identity"] for d in data} == {
            "elasticsearch",
            "logging-es",
            "system.admin",
            "kibana-internal",
        }
        assert all(d["version"] is None for d in data)

    def test_rotate_requires_cluster(self, db_env):
        result = runner.invoke(cli_main.app, ["certs", "rotate", "ghost", "system.admin", "-n", "logging"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_rotate_then_show(self, db_env, resource_file):
        runner.invoke(cli_main.app, ["apply", str(resource_file)])

        rotated = runner.invoke(
            cli_main.app, ["certs", "rotate", "elasticsearch", "elasticsearch", "-n", "logging"]
        )
        shown = runner.invoke(cli_main.app, ["certs", "show", "elasticsearch", "-n", "logging", "--json"])

        assert rotated.exit_code == 0
        assert "Rotated elasticsearch to v1" in rotated.output
        assert "next reconcile" in rotated.output
        versions = {d["identity"]: d["version"] for d in json.loads(shown.output)}
        assert versions["elasticsearch"] == 1
        assert versions["system.admin"] is None


class TestWorkloadsCommands:
    """Tests for recording readiness without a platform."""

    def test_rollout_waits_until_marked_ready(self, db_env, resource_file, connection):
        runner.invoke(cli_main.app, ["apply", str(resource_file)])
        waiting = runner.invoke(cli_main.app, ["reconcile", "elasticsearch", "-n", "logging", "--passes", "5"])
        listed = runner.invoke(cli_main.app, ["workloads", "list", "elasticsearch", "-n", "logging", "--json"])

        assert pass_lines(waiting.output)[-1] == "pass 5: AwaitingHealth"
        workloads = json.loads(listed.output)
        assert len(workloads) == 1
        assert workloads[0]["ready"] is False

        name = workloads[0]["name"]
        marked = runner.invoke(cli_main.app, ["workloads", "ready", name, "-n", "logging"])
        resumed = runner.invoke(cli_main.app, ["reconcile", "elasticsearch", "-n", "logging"])

        assert marked.exit_code == 0
        assert f"Marked logging/{name} ready" in marked.output
        assert pass_lines(resumed.output) == ["pass 1: Applying"]

    def test_ready_unknown_workload(self, db_env):
        result = runner.invoke(cli_main.app, ["workloads", "ready", "ghost-1", "-n", "logging"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_list_empty(self, db_env):
        result = runner.invoke(cli_main.app, ["workloads", "list", "ghost", "-n", "logging"])

        assert result.exit_code == 0
        assert "No workloads" in result.output
