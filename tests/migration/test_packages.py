from gym_app.migration.pipeline.packages import (
    DESCRIPTION_MAX_LENGTH,
    NAME_MAX_LENGTH,
    extract_legacy_packages,
    is_canonical_id,
    package_record,
    plan_packages,
)

PACKAGES_DUMP = """
INSERT INTO `packages` (`id`, `name`, `price`, `duration`, `number_of_passes`, `access_level`,
  `requires_trainer`, `description`, `created_at`, `is_active`) VALUES
(1, 'Gold', '49.99', '0', '12', 'full_access', '1', 'All hours', '2021-01-01 08:00:00', '1'),
(2, 'Retired', '10', '30', NULL, NULL, '0', NULL, NULL, '0'),
(3, NULL, '5', '30', NULL, NULL, '0', NULL, NULL, '1');
"""

UUID = "0b9e1c3a-5b7d-4c1e-9a2f-3d4e5f6a7b8c"


def test_read_legacy_packages_metadata():
    catalog = extract_legacy_packages(PACKAGES_DUMP)

    assert len(catalog) == 2
    gold = catalog.lookup("1")
    assert gold.name == "Gold"
    assert gold.price == 49.99
    assert gold.duration_days == 1
    assert gold.number_of_passes == 12
    assert gold.access_level == "full_access"
    assert gold.requires_trainer is True
    assert gold.created_at == "2021-01-01"
    assert gold.archived is False
    assert catalog.lookup("retired").archived is True


def test_archived_column_maps_directly():
    dump = "INSERT INTO packages (id, name, archived) VALUES (1, 'Old', '1'), (2, 'New', '0');"

    catalog = extract_legacy_packages(dump)

    assert catalog.lookup("Old").archived is True
    assert catalog.lookup("New").archived is False


def test_plan_packages_matches_legacy_id_then_name():
    catalog = extract_legacy_packages(PACKAGES_DUMP)

    plan = plan_packages(["1", "gold", "Platinum", None, "Platinum"], catalog, "gym-1")

    assert [package.name for package in plan] == ["Gold", "Platinum"]
    gold, platinum = plan.packages
    assert gold.references == ("1", "gold")
    assert gold.from_legacy is True
    assert gold.record["duration_value"] == 1
    assert gold.record["description"] == "All hours"
    assert gold.record["created_at"] == "2021-01-01"
    assert platinum.from_legacy is False
    assert plan.name_for("1") == "Gold"
    assert plan.name_for("Platinum") == "Platinum"


def test_placeholder_record():
    record = package_record("Day Pass", None, "gym-1")

    assert record == {
        "name": "Day Pass",
        "price": 0,
        "duration_value": 30,
        "duration_unit": "days",
        "number_of_passes": 0,
        "access_level": "off_peak_hours",
        "requires_trainer": False,
        "description": "Migrated package (Day Pass)",
        "archived": False,
        "gym_id": "gym-1",
    }


def test_canonical_reference_keeps_its_id():
    plan = plan_packages([UUID], extract_legacy_packages(""), "gym-1")

    package = plan.packages[0]
    assert is_canonical_id(UUID)
    assert package.canonical_id == UUID
    assert package.record["id"] == UUID


def test_names_and_descriptions_are_truncated():
    long_name = "N" * (NAME_MAX_LENGTH + 50)

    plan = plan_packages([long_name], extract_legacy_packages(""), "gym-1")

    record = plan.packages[0].record
    assert len(record["name"]) == NAME_MAX_LENGTH
    assert len(record["description"]) <= DESCRIPTION_MAX_LENGTH
