import json
from pathlib import Path
from unittest.mock import Mock, patch

from click.testing import CliRunner

from gym_app.migration.cli import get_disabled_migration_group
from gym_app.models import Member, Staff, db


def _write_dump(tmp_path: Path, text: str) -> Path:
    dump_file = tmp_path / "legacy.sql"
    dump_file.write_text(text, encoding="utf-8")
    return dump_file


def test_migration_group_shows_configuration(runner):
    result = runner.invoke(args=["migration"])

    assert result.exit_code == 0, result.output
    assert "Batch size: 200" in result.output
    assert "Column map: bundled legacy_dump_v1.yaml" in result.output


def test_preview_cli_prints_json(runner, tmp_path, members_dump):
    dump_path = _write_dump(tmp_path, members_dump)

    result = runner.invoke(args=["migration", "preview", "--file", str(dump_path), "--tenant", "gym-1"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["member_count"] == 2
    assert payload["packages_planned"] == ["Gold"]
    assert db.session.query(Member).count() == 0


def test_preview_cli_requires_existing_file(runner, tmp_path):
    result = runner.invoke(
        args=["migration", "preview", "--file", str(tmp_path / "missing.sql"), "--tenant", "gym-1"]
    )

    assert result.exit_code == 2


def test_generate_cli_writes_output_file(runner, tmp_path, members_dump):
    dump_path = _write_dump(tmp_path, members_dump)
    output = tmp_path / "migration.sql"

    result = runner.invoke(
        args=["migration", "generate", "--file", str(dump_path), "--tenant", "gym-1", "--output", str(output)]
    )

    assert result.exit_code == 0, result.output
    assert result.output.startswith(f"Wrote {output}")
    script = output.read_text(encoding="utf-8")
    assert "BEGIN;" in script
    assert "COMMIT;" in script


def test_run_cli_inline_dry_run(runner, tmp_path, members_dump):
    dump_path = _write_dump(tmp_path, members_dump)

    result = runner.invoke(
        args=["migration", "run", "--file", str(dump_path), "--tenant", "gym-1", "--inline", "--dry-run"]
    )

    assert result.exit_code == 0, result.output
    assert "Starting migration for tenant gym-1 (dry run)" in result.output
    assert "Plan: 2 members, 2 staff, 1 packages, 1 skipped rows" in result.output
    assert "Dry run: nothing was written." in result.output
    assert db.session.query(Member).count() == 0


def test_run_cli_requires_confirmation(runner, tmp_path, members_dump):
    dump_path = _write_dump(tmp_path, members_dump)

    result = runner.invoke(args=["migration", "run", "--file", str(dump_path), "--tenant", "gym-1", "--inline"])

    assert result.exit_code == 2
    assert "--confirm MIGRATE" in result.output
    assert db.session.query(Member).count() == 0


def test_run_cli_inline_writes_rows(runner, tmp_path, members_dump):
    dump_path = _write_dump(tmp_path, members_dump)

    result = runner.invoke(
        args=[
            "migration",
            "run",
            "--file",
            str(dump_path),
            "--tenant",
            "gym-1",
            "--inline",
            "--confirm",
            "MIGRATE",
            "--summary-json",
        ]
    )

    assert result.exit_code == 0, result.output
    assert "[100%] 4/4 rows written" in result.output
    assert "Packages created: 1 (map size 1)" in result.output
    assert "Verified members: 2" in result.output
    summary = json.loads(result.output[result.output.index("{") :])
    assert summary["run_diagnostics"]["roles_created"] == 2
    assert db.session.query(Member).count() == 2
    assert db.session.query(Staff).count() == 2


def test_run_cli_queues_by_default(runner, tmp_path, members_dump):
    dump_path = _write_dump(tmp_path, members_dump)

    async_result = Mock()
    async_result.id = "celery-task-123"
    celery_app = Mock()
    celery_app.send_task.return_value = async_result

    with patch("gym_app.migration.cli._resolve_celery", return_value=celery_app):
        result = runner.invoke(
            args=["migration", "run", "--file", str(dump_path), "--tenant", "gym-1", "--confirm", "MIGRATE"]
        )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output.strip())
    assert payload == {"task_id": "celery-task-123", "status": "queued", "dry_run": False}
    celery_app.send_task.assert_called_once_with(
        "migration.run",
        kwargs={
            "file_path": str(dump_path.resolve()),
            "tenant_id": "gym-1",
            "dry_run": False,
            "keep_file": True,
        },
    )
    assert dump_path.exists()


def test_run_cli_summary_json_requires_inline(runner, tmp_path, members_dump):
    dump_path = _write_dump(tmp_path, members_dump)

    with patch("gym_app.migration.cli._resolve_celery") as mock_resolve:
        result = runner.invoke(
            args=["migration", "run", "--file", str(dump_path), "--tenant", "gym-1", "--dry-run", "--summary-json"]
        )

    assert result.exit_code != 0
    assert "--summary-json is only available for --inline runs." in result.output
    mock_resolve.assert_not_called()


def test_cli_refuses_when_disabled(app, runner, tmp_path, members_dump):
    dump_path = _write_dump(tmp_path, members_dump)
    app.config["MIGRATION_ENABLED"] = False

    result = runner.invoke(args=["migration", "preview", "--file", str(dump_path), "--tenant", "gym-1"])

    assert result.exit_code == 1
    assert "Migrations are disabled" in result.output


def test_disabled_group_explains_flag():
    result = CliRunner().invoke(get_disabled_migration_group(), [])

    assert result.exit_code == 1
    assert "MIGRATION_ENABLED=false" in result.output
