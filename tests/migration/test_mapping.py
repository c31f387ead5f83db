import textwrap

import pytest

from gym_app.migration.mapping import (
    DEFAULT_COLUMN_MAP_PATH,
    MappingLoadError,
    default_column_map,
    get_active_column_map,
    load_column_map,
)

MINIMAL_MAP = """
version: 2
name: tiny
success_statuses: [Paid]
sources:
  payments:
    tables: [payments]
    fields:
      user_id: {candidates: [user_id]}
  members:
    tables: [members]
    fields:
      id: {candidates: [id], position: 0}
  staff:
    tables: [staff]
    fields:
      email: {candidates: [email]}
  packages:
    tables: [packages]
    fields:
      name: {candidates: [name]}
"""


def _write(tmp_path, text, name="map.yaml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def test_default_map_loads():
    column_map = load_column_map()

    assert column_map.version == 1
    assert column_map.name == "legacy_dump"
    assert len(column_map.checksum) == 64
    assert "paid" in column_map.success_statuses
    assert "trainer" in column_map.role_tables
    members = column_map.source("members")
    assert members.tables[0] == "users"
    assert members.field("gender").position == 8
    assert column_map.path == DEFAULT_COLUMN_MAP_PATH


def test_default_map_is_cached():
    assert default_column_map() is default_column_map()


def test_custom_map_lowercases_statuses(tmp_path):
    column_map = load_column_map(_write(tmp_path, MINIMAL_MAP))

    assert column_map.name == "tiny"
    assert column_map.success_statuses == ("paid",)
    assert column_map.role_tables == ("admin", "trainer")
    assert column_map.source("members").field("id").position == 0


def test_missing_file(tmp_path):
    with pytest.raises(MappingLoadError, match="not found"):
        load_column_map(tmp_path / "missing.yaml")


def test_missing_sources(tmp_path):
    path = _write(
        tmp_path,
        """
        version: 1
        success_statuses: [paid]
        sources:
          payments:
            tables: [payments]
            fields:
              user_id: {candidates: [user_id]}
        """,
    )

    with pytest.raises(MappingLoadError, match="members, staff, packages"):
        load_column_map(path)


def test_invalid_field_definitions(tmp_path):
    broken = MINIMAL_MAP.replace("position: 0", "position: -1")

    with pytest.raises(MappingLoadError, match="cannot be negative"):
        load_column_map(_write(tmp_path, broken))

    with pytest.raises(MappingLoadError, match="no field"):
        load_column_map(_write(tmp_path, MINIMAL_MAP, "ok.yaml")).source("members").field("email")


def test_invalid_yaml(tmp_path):
    with pytest.raises(MappingLoadError, match="Failed to parse"):
        load_column_map(_write(tmp_path, "version: [unclosed"))


def test_active_map_follows_config_and_caches(app, tmp_path):
    assert get_active_column_map().name == "legacy_dump"

    path = _write(tmp_path, MINIMAL_MAP)
    app.config["MIGRATION_COLUMN_MAP_PATH"] = str(path)

    first = get_active_column_map()
    assert first.name == "tiny"
    assert get_active_column_map() is first


def test_active_map_missing_path(app, tmp_path):
    app.config["MIGRATION_COLUMN_MAP_PATH"] = str(tmp_path / "gone.yaml")

    with pytest.raises(MappingLoadError):
        get_active_column_map()
