import json

from gym_app.migration.pipeline.plan import SKIP_NO_IDENTIFIER, build_migration_plan, singular_table_name


def _members_by_email(plan):
    return {member["email"]: member for member in plan.members}


def test_members_are_enriched_from_payments(members_dump, today):
    plan = build_migration_plan(members_dump, "gym-1", today=today)

    ada = _members_by_email(plan)["ada@example.com"]
    assert ada["id"] == "10"
    assert ada["first_name"] == "Ada"
    assert ada["last_name"] == "Lovelace"
    assert ada["package_id"] == "Gold"
    assert ada["membership_expiry"] == "2030-01-31"
    assert ada["gender"] == "female"
    assert ada["status"] == "active"
    assert ada["gym_id"] == "gym-1"
    assert json.loads(ada["qr_code_data"]) == {"userId": "10", "packageId": "Gold", "expiryDate": "2030-01-31"}


def test_failed_payments_do_not_enrich(members_dump, today):
    plan = build_migration_plan(members_dump, "gym-1", today=today)

    bob = _members_by_email(plan)["bob@example.com"]
    assert bob["last_name"] == "O'Brien"
    assert bob["package_id"] is None
    assert bob["membership_expiry"] is None
    assert bob["status"] == "expired"
    assert bob["gender"] == "male"


def test_skip_accounting(members_dump, today):
    plan = build_migration_plan(members_dump, "gym-1", today=today)

    assert plan.skipped_payments == 1
    assert len(plan.skipped_rows) == 1
    assert plan.skipped_rows[0]["reason"] == SKIP_NO_IDENTIFIER
    assert plan.diagnostics.member_rows == 4
    assert plan.diagnostics.parsed_members == 3
    assert plan.member_count == 2
    assert any(warning.startswith("Payment row missing identifiers") for warning in plan.warnings)


def test_duplicate_emails_keep_first_occurrence(members_dump, today):
    plan = build_migration_plan(members_dump, "gym-1", today=today)

    assert _members_by_email(plan)["ada@example.com"]["id"] == "10"
    assert plan.diagnostics.duplicate_emails_dropped == 1
    assert plan.diagnostics.duplicate_email_samples == ["ada@example.com"]


def test_enrichment_diagnostics(members_dump, today):
    diagnostics = build_migration_plan(members_dump, "gym-1", today=today).diagnostics

    assert diagnostics.before_missing == {"package": 3, "expiry": 3, "gender": 1}
    assert diagnostics.after_missing == {"package": 1, "expiry": 1, "gender": 1}
    assert diagnostics.map_sizes == {"by_id": 1, "by_email": 1, "by_phone": 0}
    assert diagnostics.payment_rows == 4
    assert diagnostics.payment_qualifying_rows == 2
    sample = diagnostics.enriched_samples[0]
    assert sample["id"] == "10"
    assert sample["source"] == "by_id"
    assert sample["before"]["package_id"] is None
    assert sample["after"]["package_id"] == "Gold"


def test_staff_from_role_and_generic_tables(members_dump, today):
    plan = build_migration_plan(members_dump, "gym-1", today=today)

    staff = {member["email"]: member for member in plan.staff}
    assert set(staff) == {"tom@gym.example", "sam@gym.example"}
    assert staff["tom@gym.example"]["role_name"] == "trainer"
    assert staff["sam@gym.example"]["role_name"] == "receptionist"
    assert staff["sam@gym.example"]["hire_date"] == today.isoformat()
    assert json.loads(staff["tom@gym.example"]["qr_code"]) == {
        "staffId": "t1",
        "roleName": "trainer",
        "gymId": "gym-1",
    }
    assert plan.diagnostics.staff_rows == 3
    assert plan.diagnostics.staff_duplicates_dropped == 1


def test_packages_planned_for_member_references(members_dump, today):
    plan = build_migration_plan(members_dump, "gym-1", today=today)

    assert [package.name for package in plan.packages] == ["Gold"]
    assert plan.packages.packages[0].from_legacy is False


def test_positional_members_without_column_list(positional_dump, today):
    plan = build_migration_plan(positional_dump, "gym-2", today=today)

    assert plan.member_count == 1
    cara = plan.members[0]
    assert cara["id"] == "7"
    assert cara["first_name"] == "Cara"
    assert cara["last_name"] == "Jones"
    assert cara["email"] == "cara@example.com"
    assert cara["phone"] == "0700 111"
    assert cara["date_of_birth"] == "1990-02-03"
    assert cara["gender"] == "female"
    assert cara["created_at"] == "2020-05-06T10:00:00"
    assert cara["status"] == "expired"


def test_missing_tables_produce_warnings_not_errors(today):
    plan = build_migration_plan("", "gym-1", today=today)

    assert plan.member_count == 0
    assert plan.staff_count == 0
    assert len(plan.packages) == 0
    assert len(plan.warnings) == 2
    assert plan.detected_tables == []


def test_column_hints_for_unresolved_fields(today):
    dump = "INSERT INTO users (id, full_name, emial) VALUES ('1', 'Dee Dee', 'dee@example.com');"

    plan = build_migration_plan(dump, "gym-1", today=today)

    assert plan.diagnostics.column_hints["users"]["email"] == "emial"


def test_singular_table_name():
    assert singular_table_name("Trainers") == "trainer"
    assert singular_table_name("staff") == "staff"
    assert singular_table_name("s") == "s"
