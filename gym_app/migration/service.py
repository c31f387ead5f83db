"""Build execution drivers bound to the current Flask application."""

from __future__ import annotations

from flask import current_app

from gym_app.models import db
from gym_app.utils.migration import get_batch_size

from .mapping import get_active_column_map
from .pipeline.driver import MigrationDriver
from .pipeline.store import SqlAlchemyRecordStore


def create_driver(*, batch_size: int | None = None) -> MigrationDriver:
    """
    Return a driver writing through ``db.session`` with the configured column map.

    Must be called inside an application context.
    """

    return MigrationDriver(
        SqlAlchemyRecordStore(db.session),
        batch_size=batch_size or get_batch_size(current_app),
        column_map=get_active_column_map(),
        logger=current_app.logger,
    )
