import logging
import traceback
from datetime import date, datetime
from decimal import Decimal

from flask import jsonify

from models import db
from services.outcome_repository import RecordNotFound


def jsonable(value):
    """Convert service results (Decimals, datetimes, tuples) into JSON-friendly values"""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    return value


def call_service(operation, error_context):
    """Run a service call and turn its outcome into a JSON response.

    {'success': False} results become 404, ValueError 400, RecordNotFound 404 and
    anything else 500 after rolling back the session.
    """
    try:
        result = operation()
    except RecordNotFound as e:
        logging.warning(f"{error_context}: {str(e)}")
        return jsonify({'success': False, 'message': str(e)}), 404
    except ValueError as e:
        db.session.rollback()
        logging.warning(f"{error_context}: {str(e)}")
        return jsonify({'success': False, 'message': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        logging.error(f"{error_context}: {str(e)}\n{traceback.format_exc()}")
        return jsonify({'success': False, 'message': f"{error_context}: {str(e)}"}), 500

    if isinstance(result, dict) and result.get('success') is False:
        return jsonify(jsonable(result)), 404
    return jsonify(jsonable(result))
