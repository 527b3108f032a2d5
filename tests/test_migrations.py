"""
Test: Alembic revisions build the same schema the models describe.
"""
import importlib

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

from marking_app.models import db

REVISIONS = [
    importlib.import_module("marking_app.migrations.add_teams_tables"),
    importlib.import_module("marking_app.migrations.add_assignments_rubrics"),
    importlib.import_module("marking_app.migrations.add_assignment_due_date"),
]


def _run(conn, step):
    ctx = MigrationContext.configure(conn)
    with Operations.context(ctx):
        for revision in (REVISIONS if step == "upgrade" else reversed(REVISIONS)):
            getattr(revision, step)()


class TestMigrations:
    def test_revision_chain(self):
        assert REVISIONS[0].down_revision is None
        for previous, current in zip(REVISIONS, REVISIONS[1:]):
            assert current.down_revision == previous.revision

    def test_headers_match_identifiers(self):
        for revision in REVISIONS:
            header = dict(
                line.split(":", 1) for line in revision.__doc__.splitlines() if ":" in line
            )
            assert header["Revision ID"].strip() == revision.revision
            assert (header["Revises"].strip() or None) == revision.down_revision

    def test_upgrade_matches_models(self):
        engine = sa.create_engine("sqlite://")
        with engine.begin() as conn:
            _run(conn, "upgrade")
            inspector = sa.inspect(conn)
            assert set(inspector.get_table_names()) == set(db.metadata.tables)
            for name, table in db.metadata.tables.items():
                columns = {c["name"] for c in inspector.get_columns(name)}
                assert columns == {c.name for c in table.columns}, name

    def test_due_date_revision_is_idempotent(self):
        engine = sa.create_engine("sqlite://")
        with engine.begin() as conn:
            db.metadata.create_all(conn)
            ctx = MigrationContext.configure(conn)
            with Operations.context(ctx):
                REVISIONS[2].upgrade()
            columns = [c["name"] for c in sa.inspect(conn).get_columns("assignments")]
            assert columns.count("due_date") == 1

    def test_downgrade(self):
        engine = sa.create_engine("sqlite://")
        with engine.begin() as conn:
            _run(conn, "upgrade")
            _run(conn, "downgrade")
            assert sa.inspect(conn).get_table_names() == []
