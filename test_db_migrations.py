"""Startup schema checks for databases created by older versions."""

from sqlalchemy import inspect, text

from db_migrations import check_and_update_database
from models import db, Log


def test_fresh_schema_needs_no_changes(app):
    assert check_and_update_database(app) is True
    with app.app_context():
        assert Log.query.filter(Log.action.like('MIGRATION_%')).count() == 0


def test_legacy_mapping_table_is_upgraded(app):
    with app.app_context():
        with db.engine.begin() as connection:
            connection.execute(text("DROP TABLE clo_plo_mapping"))
            connection.execute(text(
                "CREATE TABLE clo_plo_mapping ("
                "id INTEGER PRIMARY KEY, clo_id INTEGER NOT NULL, plo_id INTEGER NOT NULL, created_at DATETIME)"
            ))
            connection.execute(text("INSERT INTO clo_plo_mapping (clo_id, plo_id) VALUES (1, 1)"))

    assert check_and_update_database(app) is True

    with app.app_context():
        inspector = inspect(db.engine)
        columns = [c['name'] for c in inspector.get_columns('clo_plo_mapping')]
        assert 'mapping_strength' in columns
        unique_indexes = [i['name'] for i in inspector.get_indexes('clo_plo_mapping') if i.get('unique')]
        assert '_clo_plo_uc' in unique_indexes

        with db.engine.connect() as connection:
            strength = connection.execute(text("SELECT mapping_strength FROM clo_plo_mapping")).scalar()
        assert strength == 2
        assert Log.query.filter_by(action='MIGRATION_ADD_MAPPING_STRENGTH').count() == 1

    # A second run finds nothing left to do
    assert check_and_update_database(app) is True
