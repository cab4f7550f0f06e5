import logging
import traceback
from sqlalchemy import inspect, text

# Unique keys the attainment/grade upserts conflict on: table -> (index name, columns)
UPSERT_UNIQUE_KEYS = {
    'course_clo_attainment_summary': ('_clo_summary_offering_clo_uc', ('course_offering_id', 'clo_id')),
    'program_plo_attainment_summary': ('_plo_summary_degree_session_plo_uc', ('degree_id', 'academic_session_id', 'plo_id')),
    'course_result': ('_course_result_student_offering_uc', ('student_id', 'course_offering_id')),
    'semester_result': ('_semester_result_student_semester_uc', ('student_id', 'semester_id')),
    'clo_plo_mapping': ('_clo_plo_uc', ('clo_id', 'plo_id')),
    'question_clo_mapping': ('_question_clo_uc', ('question_id', 'clo_id')),
}

def _unique_column_sets(inspector, table_name):
    """Column sets covered by a unique constraint or unique index of a table"""
    column_sets = set()
    for constraint in inspector.get_unique_constraints(table_name):
        column_sets.add(frozenset(constraint['column_names']))
    for index in inspector.get_indexes(table_name):
        if index.get('unique'):
            column_sets.add(frozenset(c for c in index['column_names'] if c))
    return column_sets

def _log_migration(engine, action, description):
    try:
        with engine.begin() as connection:
            connection.execute(
                text("INSERT INTO log (action, description, timestamp) VALUES (:action, :description, CURRENT_TIMESTAMP)"),
                {"action": action, "description": description}
            )
    except Exception as log_e:
        logging.warning(f"Could not log migration: {log_e}")

def check_and_update_database(app):
    """
    Check and update the database schema if necessary.
    This function runs at app startup to bring databases created by older
    versions up to date. Returns True on success, False on failure.
    """
    logging.info("Checking database schema for required columns and unique keys...")

    try:
        with app.app_context():
            from models import db
            engine = db.engine
            inspector = inspect(engine)
            table_names = inspector.get_table_names()

            # --- mapping_strength on clo_plo_mapping ---
            if 'clo_plo_mapping' in table_names:
                columns = [c['name'] for c in inspector.get_columns('clo_plo_mapping')]

                if 'mapping_strength' not in columns:
                    logging.info("Adding mapping_strength column to clo_plo_mapping table")
                    with engine.begin() as connection:
                        connection.execute(text(
                            "ALTER TABLE clo_plo_mapping ADD COLUMN mapping_strength INTEGER DEFAULT 2"
                        ))
                    _log_migration(engine, "MIGRATION_ADD_MAPPING_STRENGTH",
                                   "Added mapping_strength (default 2) to clo_plo_mapping")
                    logging.info("Successfully added mapping_strength column to clo_plo_mapping table")
                else:
                    logging.info("mapping_strength column already exists in clo_plo_mapping table")
            else:
                logging.warning("clo_plo_mapping table not found. It will be created when the app runs.")

            # --- unique keys used by the upserts ---
            for table_name, (index_name, key_columns) in UPSERT_UNIQUE_KEYS.items():
                if table_name not in table_names:
                    continue
                if frozenset(key_columns) in _unique_column_sets(inspector, table_name):
                    continue

                logging.info(f"Creating unique index {index_name} on {table_name}({', '.join(key_columns)})")
                with engine.begin() as connection:
                    connection.execute(text(
                        f"CREATE UNIQUE INDEX {index_name} ON {table_name} ({', '.join(key_columns)})"
                    ))
                _log_migration(engine, "MIGRATION_ADD_UNIQUE_INDEX", f"Created {index_name} on {table_name}")

        return True
    except Exception as e:
        error_traceback = traceback.format_exc()
        logging.error(f"Error checking or updating database schema: {str(e)}\n{error_traceback}")
        return False
