"""Tests for the command-line interface."""

import asyncio
import json

import httpx
import pytest
import yaml
from click.testing import CliRunner

import dirmigrator.cli as cli_module
from dirmigrator.api.client import RestDirectoryClient
from dirmigrator.cli import cli
from dirmigrator.core.models import MigrationRun, ObjectStatus, PhaseStatus
from dirmigrator.core.orchestrator import MigrationOrchestrator
from dirmigrator.core.state import JsonStateStore


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "source": {"tenant_id": "contoso", "base_url": "https://src.example/api"},
                "destination": {"tenant_id": "fabrikam", "base_url": "https://dst.example/api"},
                "state": {"path": str(tmp_path / "ledger.json")},
                "logging": {"console": False},
            }
        )
    )
    return path


def write_ledger(path, complete=True):
    run = MigrationRun(run_id="r1", source_tenant="contoso", destination_tenant="fabrikam")
    users = run.ensure_phase("users", [])
    users.record_for("u1", "u1").mark(ObjectStatus.COMPLETED, destination_id="D1")
    run.add_to_manifest("users", "D1")
    if complete:
        users.status = PhaseStatus.COMPLETED
    else:
        users.status = PhaseStatus.FAILED
        users.record_for("u2", "u2").mark(ObjectStatus.FAILED, last_error="rejected")
    asyncio.run(JsonStateStore(path).save(run))


class DirectoryApi:
    """Both tenants behind one httpx.MockTransport, keyed by host."""

    def __init__(self):
        self.source = {
            "users": [
                {"id": "u1", "userPrincipalName": "u1@contoso.com", "displayName": "User One"},
                {"id": "u2", "userPrincipalName": "u2@contoso.com", "displayName": "User Two"},
            ],
            "groups": [{"id": "g1", "displayName": "Group One", "members": ["u1"]}],
        }
        self.created = []
        self.deleted = []
        self.reject_creates = False

    def __call__(self, request):
        object_type = request.url.path.split("/")[2]
        if request.url.host == "src.example":
            return httpx.Response(200, json={"value": self.source.get(object_type, [])})

        if request.method == "GET":
            return httpx.Response(200, json={"value": []})
        if request.method == "DELETE":
            self.deleted.append(request.url.path)
            return httpx.Response(204)
        if self.reject_creates:
            return httpx.Response(422, json={"error": {"message": "invalid payload"}})
        self.created.append((object_type, json.loads(request.content)))
        return httpx.Response(201, json={"id": f"{object_type}-{len(self.created)}"})


@pytest.fixture
def api(monkeypatch):
    """Route every CLI tenant session through an in-memory directory API."""
    directory = DirectoryApi()
    transport = httpx.MockTransport(directory)
    monkeypatch.setattr(
        cli_module,
        "RestDirectoryClient",
        lambda config: RestDirectoryClient(config, transport=transport),
    )
    return directory


class ShutdownOrchestrator(MigrationOrchestrator):
    """Behaves as if Ctrl-C arrived before the first phase."""

    async def run(self, run, store):
        self.shutdown()
        return await super().run(run, store)


class TestStartCommand:
    """Tests for 'dirmigrate start' exit statuses."""

    def test_completed_run_exits_zero(self, config_file, tmp_path, api):
        result = CliRunner().invoke(cli, ["-c", str(config_file), "start", "-y", "--run-id", "r1"])

        assert result.exit_code == 0
        assert [object_type for object_type, _ in api.created] == ["users", "users", "groups"]
        run = asyncio.run(JsonStateStore(tmp_path / "ledger.json").load())
        assert run.run_id == "r1"
        assert run.succeeded

    def test_existing_ledger_is_structural(self, config_file, tmp_path, api):
        write_ledger(tmp_path / "ledger.json")

        result = CliRunner().invoke(cli, ["-c", str(config_file), "start", "-y"])

        assert result.exit_code == 2
        assert api.created == []
        assert asyncio.run(JsonStateStore(tmp_path / "ledger.json").load()).run_id == "r1"

    def test_failed_phase_exits_one(self, config_file, tmp_path, api):
        api.reject_creates = True

        result = CliRunner().invoke(cli, ["-c", str(config_file), "start", "-y"])

        assert result.exit_code == 1
        run = asyncio.run(JsonStateStore(tmp_path / "ledger.json").load())
        assert run.phases["users"].status == PhaseStatus.FAILED
        assert run.phases["groups"].status == PhaseStatus.BLOCKED

    def test_cancelled_run_exits_130(self, config_file, tmp_path, api, monkeypatch):
        monkeypatch.setattr(cli_module, "MigrationOrchestrator", ShutdownOrchestrator)

        result = CliRunner().invoke(cli, ["-c", str(config_file), "start", "-y"])

        assert result.exit_code == 130
        assert api.created == []
        assert (tmp_path / "ledger.json").exists()

    def test_dry_run_needs_no_confirmation(self, config_file, tmp_path, api):
        result = CliRunner().invoke(cli, ["-c", str(config_file), "start", "--dry-run"])

        assert result.exit_code == 0
        assert api.created == []
        run = asyncio.run(JsonStateStore(tmp_path / "ledger.json").load())
        assert run.id_mapping("users") == {"u1": "dry-run-u1", "u2": "dry-run-u2"}


class TestResumeCommand:
    """Tests for 'dirmigrate resume'."""

    def test_resume_completes_failed_run(self, config_file, tmp_path, api):
        api.reject_creates = True
        first = CliRunner().invoke(cli, ["-c", str(config_file), "start", "-y"])
        assert first.exit_code == 1

        api.reject_creates = False
        result = CliRunner().invoke(cli, ["-c", str(config_file), "resume"])

        assert result.exit_code == 0
        assert [object_type for object_type, _ in api.created] == ["users", "users", "groups"]
        assert asyncio.run(JsonStateStore(tmp_path / "ledger.json").load()).succeeded

    def test_missing_ledger_is_structural(self, config_file, api):
        result = CliRunner().invoke(cli, ["-c", str(config_file), "resume"])

        assert result.exit_code == 2

    def test_corrupt_ledger_is_structural(self, config_file, tmp_path, api):
        (tmp_path / "ledger.json").write_bytes(b"\xff\xfe\x00garbage")

        result = CliRunner().invoke(cli, ["-c", str(config_file), "resume"])

        assert result.exit_code == 2


class TestRollbackCommand:
    """Tests for 'dirmigrate rollback'."""

    def test_deletes_created_objects(self, config_file, tmp_path, api):
        CliRunner().invoke(cli, ["-c", str(config_file), "start", "-y"])

        result = CliRunner().invoke(cli, ["-c", str(config_file), "rollback", "-y"])

        assert result.exit_code == 0
        assert api.deleted == ["/api/groups/groups-3", "/api/users/users-2", "/api/users/users-1"]
        run = asyncio.run(JsonStateStore(tmp_path / "ledger.json").load())
        assert run.rolled_back_at is not None

    def test_missing_ledger_is_structural(self, config_file, api):
        result = CliRunner().invoke(cli, ["-c", str(config_file), "rollback", "-y"])

        assert result.exit_code == 2
        assert api.deleted == []


class TestPlanCommand:
    """Tests for 'dirmigrate plan'."""

    def test_lists_default_phases(self, config_file):
        result = CliRunner().invoke(cli, ["-c", str(config_file), "plan"])

        assert result.exit_code == 0
        for phase in ("users", "groups", "named_locations", "access_policies"):
            assert phase in result.output


class TestReportCommand:
    """Tests for 'dirmigrate report'."""

    def test_json_report_of_completed_run(self, config_file, tmp_path):
        write_ledger(tmp_path / "ledger.json")

        result = CliRunner().invoke(cli, ["-c", str(config_file), "report", "-f", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["run_id"] == "r1"
        assert data["manifest_size"] == 1
        assert data["phases"][0]["counts"]["completed"] == 1

    def test_incomplete_run_exits_nonzero(self, config_file, tmp_path):
        write_ledger(tmp_path / "ledger.json", complete=False)

        result = CliRunner().invoke(cli, ["-c", str(config_file), "report", "-f", "detailed"])

        assert result.exit_code == 1
        assert "rejected" in result.output

    def test_missing_ledger_is_structural(self, config_file):
        result = CliRunner().invoke(cli, ["-c", str(config_file), "report"])

        assert result.exit_code == 2

    def test_report_written_to_file(self, config_file, tmp_path):
        write_ledger(tmp_path / "ledger.json")
        output = tmp_path / "report.json"

        result = CliRunner().invoke(
            cli, ["-c", str(config_file), "report", "-o", str(output)]
        )

        assert result.exit_code == 0
        assert json.loads(output.read_text())["succeeded"] is True


class TestInitCommand:
    """Tests for 'dirmigrate init'."""

    def test_writes_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        output = tmp_path / "generated.yaml"

        result = CliRunner().invoke(
            cli,
            ["init", "-o", str(output)],
            input="contoso\nhttps://src.example\nfabrikam\nhttps://dst.example\n",
        )

        assert result.exit_code == 0
        written = yaml.safe_load(output.read_text())
        assert written["source"]["tenant_id"] == "contoso"
        assert written["destination"]["base_url"] == "https://dst.example"
        assert written["destination"]["api_token"] == ""
