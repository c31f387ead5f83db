import pytest

from gym_app.migration.pipeline.driver import (
    InvalidMigrationRequest,
    MigrationDriver,
    MigrationState,
    ReferenceResolutionError,
)
from gym_app.migration.pipeline.sql_generator import SCRIPT_HEADER

UUID = "0b9e1c3a-5b7d-4c1e-9a2f-3d4e5f6a7b8c"

UUID_PACKAGE_DUMP = f"""
INSERT INTO payments (user_id, status, expiry_date, package_id) VALUES ('5', 'paid', '2030-12-31', '{UUID}');
INSERT INTO users (id, full_name, email) VALUES ('5', 'Uma Uuid', 'uma@example.com');
"""


def _driver(store, today, **kwargs):
    return MigrationDriver(store, today=today, **kwargs)


def _by_email(rows):
    return {row["email"]: row for row in rows}


def test_preview_never_writes(fake_store, members_dump, today):
    driver = _driver(fake_store, today)

    preview = driver.preview(members_dump, "gym-1")

    assert preview.member_count == 2
    assert preview.staff_count == 2
    assert preview.package_count == 1
    assert preview.skipped_payments == 1
    payload = preview.to_dict()
    assert payload["packages_planned"] == ["Gold"]
    assert len(payload["sample_members"]) == 2
    assert fake_store.calls == []
    assert driver.state is MigrationState.DONE


def test_invalid_requests_are_rejected_before_parsing(fake_store, today):
    driver = _driver(fake_store, today)

    with pytest.raises(InvalidMigrationRequest):
        driver.preview(None, "gym-1")
    with pytest.raises(InvalidMigrationRequest):
        driver.run("INSERT INTO users VALUES ('1');", "  ")
    assert driver.state is MigrationState.ERROR


def test_batch_size_must_be_positive(fake_store):
    with pytest.raises(ValueError):
        MigrationDriver(fake_store, batch_size=0)


def test_dry_run_reports_without_writing(fake_store, members_dump, today):
    result = _driver(fake_store, today).run(members_dump, "gym-1", dry_run=True)

    assert result.dry_run is True
    assert result.run_diagnostics is None
    assert result.member_count == 2
    assert result.has_errors is False
    assert fake_store.calls == []
    assert result.to_dict()["run_diagnostics"] is None


def test_run_creates_packages_roles_and_rows(fake_store, members_dump, today):
    result = _driver(fake_store, today).run(members_dump, "gym-1")

    diagnostics = result.run_diagnostics
    assert diagnostics.packages_created == 1
    assert diagnostics.roles_created == 2
    assert diagnostics.members_attempted == 2
    assert diagnostics.staff_attempted == 2
    assert diagnostics.verified_member_count == 2
    assert diagnostics.verified_staff_count == 2
    assert result.has_errors is False

    gold = fake_store.find("packages", {"name": "Gold"})[0]
    members = _by_email(fake_store.tables["members"])
    assert members["ada@example.com"]["package_id"] == gold["id"]
    assert members["bob@example.com"]["package_id"] is None

    roles = {role["name"]: role["id"] for role in fake_store.tables["roles"]}
    staff = _by_email(fake_store.tables["staff"])
    assert staff["tom@gym.example"]["role_id"] == roles["trainer"]
    assert staff["sam@gym.example"]["role_id"] == roles["receptionist"]


def test_existing_package_is_reused_by_name(fake_store, members_dump, today):
    fake_store.seed("packages", id="pkg-1", name="Gold", gym_id="gym-1")

    result = _driver(fake_store, today).run(members_dump, "gym-1")

    assert result.run_diagnostics.packages_created == 0
    assert ("packages", 1) not in fake_store.calls
    assert _by_email(fake_store.tables["members"])["ada@example.com"]["package_id"] == "pkg-1"


def test_canonical_package_reference_is_found_by_id(fake_store, today):
    fake_store.seed("packages", id=UUID, name="Imported", gym_id="gym-1")

    result = _driver(fake_store, today).run(UUID_PACKAGE_DUMP, "gym-1")

    assert result.run_diagnostics.packages_created == 0
    assert fake_store.tables["members"][0]["package_id"] == UUID


def test_failed_batch_is_recorded_and_run_continues(store_factory, members_dump, today):
    store = store_factory(fail_batches={"members": {2}})
    percents = []

    result = _driver(store, today, batch_size=1).run(members_dump, "gym-1", on_progress=percents.append)

    diagnostics = result.run_diagnostics
    assert diagnostics.member_upsert_batches == 2
    assert diagnostics.member_upsert_errors == [
        {"batch": 2, "error": "simulated failure writing members batch 2"}
    ]
    assert diagnostics.staff_upsert_errors == []
    assert len(store.tables["members"]) == 1
    assert len(store.tables["staff"]) == 2
    assert result.has_errors is True
    assert percents == [25, 50, 75, 100]


def test_verification_failure_leaves_counts_unset(store_factory, members_dump, today):
    store = store_factory(count_error=True)

    result = _driver(store, today).run(members_dump, "gym-1")

    assert result.run_diagnostics.verified_member_count is None
    assert result.run_diagnostics.verified_staff_count is None
    assert result.has_errors is False


def test_reference_failure_aborts_before_rows(store_factory, members_dump, today):
    store = store_factory(fail_tables=("packages",))
    driver = _driver(store, today)

    with pytest.raises(ReferenceResolutionError):
        driver.run(members_dump, "gym-1")

    assert "members" not in store.tables
    assert "staff" not in store.tables
    assert driver.state is MigrationState.ERROR


def test_event_stream_order(fake_store, members_dump, today):
    events = list(_driver(fake_store, today).iter_run_events(members_dump, "gym-1"))

    assert [event.type for event in events] == ["start", "preview", "progress", "progress", "done"]
    assert events[2].payload == {"percent": 50, "written": 2, "total": 4, "table": "members"}
    assert events[3].payload["percent"] == 100
    done = events[-1].to_dict()
    assert done["type"] == "done"
    assert done["state"] == "done"
    assert done["run_diagnostics"]["packages_created"] == 1


def test_dry_run_event_stream(fake_store, members_dump, today):
    events = list(_driver(fake_store, today).iter_run_events(members_dump, "gym-1", dry_run=True))

    assert [event.type for event in events] == ["start", "preview", "done"]
    assert events[0].payload == {"tenant_id": "gym-1", "dry_run": True}
    assert events[-1].payload["dry_run"] is True


def test_errors_become_terminal_events(store_factory, members_dump, today):
    store = store_factory(fail_tables=("packages",))

    events = list(_driver(store, today).iter_run_events(members_dump, "gym-1"))

    assert [event.type for event in events] == ["start", "preview", "error"]
    assert events[-1].payload["error_type"] == "ReferenceResolutionError"
    assert "Gold" in events[-1].payload["error"]


def test_empty_run_still_reaches_full_progress(fake_store, today):
    events = list(_driver(fake_store, today).iter_run_events("", "gym-1"))

    progress = [event for event in events if event.type == "progress"]
    assert progress[-1].payload["percent"] == 100
    assert events[-1].type == "done"


def test_generate_renders_script(fake_store, members_dump, today):
    script = _driver(fake_store, today).generate(members_dump, "gym-1")

    assert script.sql.startswith(SCRIPT_HEADER)
    assert script.packages_planned == ["Gold"]
    assert script.preview.member_count == 2
    assert fake_store.calls == []


def _store_losing_connection(store_factory):
    class ConnectionLostStore(store_factory):
        def insert_or_update(self, table, rows, conflict_columns):
            if table == "members":
                raise ConnectionError("database connection lost")
            return super().insert_or_update(table, rows, conflict_columns)

    return ConnectionLostStore()


def test_unexpected_store_error_ends_stream_with_error(store_factory, members_dump, today):
    driver = _driver(_store_losing_connection(store_factory), today)

    events = list(driver.iter_run_events(members_dump, "gym-1"))

    assert [event.type for event in events] == ["start", "preview", "error"]
    assert events[-1].payload == {"error": "database connection lost", "error_type": "ConnectionError"}
    assert driver.state is MigrationState.ERROR


def test_unexpected_store_error_propagates_from_run(store_factory, members_dump, today, monkeypatch):
    outcomes = []
    monkeypatch.setattr(
        "gym_app.migration.pipeline.driver.record_migration_run",
        lambda **labels: outcomes.append(labels),
    )
    driver = _driver(_store_losing_connection(store_factory), today)

    with pytest.raises(ConnectionError):
        driver.run(members_dump, "gym-1")

    assert driver.state is MigrationState.ERROR
    assert outcomes == [{"mode": "run", "outcome": "failure"}]
