"""Tests for the command line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from delta_sync.cli import app
from factories import changes, project, task

runner = CliRunner()


@pytest.fixture
def db(tmp_path: Path) -> Path:
    path = tmp_path / "server.db"
    result = runner.invoke(app, ["init", "--db", str(path)])
    assert result.exit_code == 0, result.output
    return path


@pytest.fixture
def changes_file(tmp_path: Path) -> Path:
    path = tmp_path / "changes.json"
    path.write_text(
        json.dumps(
            changes(
                projects={"created": [project("P1", "Inbox")]},
                tasks={"created": [task("T1", "Write tests", "P1")]},
            )
        )
    )
    return path


class TestInit:
    """init command."""

    def test_init_creates_schema(self, tmp_path: Path) -> None:
        path = tmp_path / "server.db"

        result = runner.invoke(app, ["init", "--db", str(path)])

        assert result.exit_code == 0
        assert path.exists()
        assert "Initialized" in result.output

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "delta-sync" in result.output


class TestPushPull:
    """push and pull commands."""

    def test_push_then_pull_json(self, db: Path, changes_file: Path) -> None:
        result = runner.invoke(
            app, ["push", "--db", str(db), "--owner", "user-1", "--file", str(changes_file)]
        )
        assert result.exit_code == 0, result.output
        assert "Push applied" in result.output

        result = runner.invoke(
            app, ["pull", "--db", str(db), "--owner", "user-1", "--since", "0", "--json"]
        )
        assert result.exit_code == 0, result.output

        response = json.loads(result.stdout)
        assert [row["id"] for row in response["changes"]["projects"]["created"]] == ["P1"]
        assert [row["id"] for row in response["changes"]["tasks"]["created"]] == ["T1"]
        assert response["serverTimestampMs"] > 0

    def test_pull_is_owner_scoped(self, db: Path, changes_file: Path) -> None:
        runner.invoke(
            app, ["push", "--db", str(db), "--owner", "user-1", "--file", str(changes_file)]
        )

        result = runner.invoke(app, ["pull", "--db", str(db), "--owner", "user-2", "--json"])

        response = json.loads(result.stdout)
        assert response["changes"]["projects"]["created"] == []

    def test_pull_summary(self, db: Path) -> None:
        result = runner.invoke(app, ["pull", "--db", str(db), "--owner", "user-1"])

        assert result.exit_code == 0
        assert "projects" in result.output

    def test_pull_missing_db(self, tmp_path: Path) -> None:
        """Pull never creates the store it reads from."""
        missing = tmp_path / "missing.db"

        result = runner.invoke(app, ["pull", "--db", str(missing), "--owner", "user-1"])

        assert result.exit_code == 1
        assert "not found" in result.output
        assert not missing.exists()
        assert not (tmp_path / "missing.db-wal").exists()

    def test_pull_leaves_store_unchanged(self, db: Path, changes_file: Path) -> None:
        runner.invoke(
            app, ["push", "--db", str(db), "--owner", "user-1", "--file", str(changes_file)]
        )
        before = db.read_bytes()

        result = runner.invoke(app, ["pull", "--db", str(db), "--owner", "user-1", "--json"])

        assert result.exit_code == 0, result.output
        assert db.read_bytes() == before

    def test_push_malformed(self, db: Path, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps(changes(projects={"created": [{"id": "P1"}]})))

        result = runner.invoke(
            app, ["push", "--db", str(db), "--owner", "user-1", "--file", str(bad)]
        )

        assert result.exit_code == 1
        assert "Invalid changeset" in result.output

    def test_push_not_json(self, db: Path, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text("{")

        result = runner.invoke(
            app, ["push", "--db", str(db), "--owner", "user-1", "--file", str(bad)]
        )

        assert result.exit_code == 1


class TestStatus:
    """status command."""

    def test_store_counts(self, db: Path, changes_file: Path) -> None:
        runner.invoke(
            app, ["push", "--db", str(db), "--owner", "user-1", "--file", str(changes_file)]
        )

        result = runner.invoke(app, ["status", "--db", str(db), "--owner", "user-1"])

        assert result.exit_code == 0, result.output
        assert "Store Status" in result.output
        assert "tasks" in result.output

    def test_missing_db(self, tmp_path: Path) -> None:
        result = runner.invoke(
            app, ["status", "--db", str(tmp_path / "missing.db"), "--owner", "user-1"]
        )

        assert result.exit_code == 1
        assert not (tmp_path / "missing.db").exists()


class TestSync:
    """sync command against a local store."""

    def test_sync_queue_and_status(self, db: Path, changes_file: Path, tmp_path: Path) -> None:
        state_file = tmp_path / "phone.json"

        result = runner.invoke(
            app,
            [
                "sync",
                "--owner", "user-1",
                "--db", str(db),
                "--state-file", str(state_file),
                "--queue", str(changes_file),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Synced" in result.output
        state = json.loads(state_file.read_text())
        assert state["status"] == "synced"
        assert state["replica"]["pending"] == []
        assert state["replica"]["watermark_ms"] > 0
        assert set(state["replica"]["records"]["projects"]) == {"P1"}

        result = runner.invoke(app, ["status", "--state-file", str(state_file)])
        assert result.exit_code == 0
        assert "Replica" in result.output

    def test_second_device_receives_rows(self, db: Path, changes_file: Path, tmp_path: Path) -> None:
        runner.invoke(
            app, ["push", "--db", str(db), "--owner", "user-1", "--file", str(changes_file)]
        )
        state_file = tmp_path / "tablet.json"

        result = runner.invoke(
            app,
            ["sync", "--owner", "user-1", "--db", str(db), "--state-file", str(state_file), "-q"],
        )

        assert result.exit_code == 0, result.output
        state = json.loads(state_file.read_text())
        assert set(state["replica"]["records"]["tasks"]) == {"T1"}

    def test_remote_requires_url_and_token(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.delenv("DELTA_SYNC_CLIENT__API_TOKEN", raising=False)
        monkeypatch.delenv("DELTA_SYNC_CLIENT__BASE_URL", raising=False)

        result = runner.invoke(
            app, ["sync", "--owner", "user-1", "--state-file", str(tmp_path / "s.json")]
        )

        assert result.exit_code == 1
        assert "base_url" in result.output


class TestConfig:
    """config command."""

    def test_init_writes_file(self, tmp_path: Path) -> None:
        output = tmp_path / "delta-sync.toml"

        result = runner.invoke(app, ["config", "--init", "--output", str(output)])

        assert result.exit_code == 0
        content = output.read_text()
        assert "[store]" in content
        assert "[retry]" in content

    def test_show(self) -> None:
        result = runner.invoke(app, ["config", "--show"])

        assert result.exit_code == 0
        assert "Store Path" in result.output
