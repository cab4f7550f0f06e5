from flask import Blueprint, jsonify, request
import logging

from models import db
from routes.responses import call_service
from services.outcome_repository import OutcomeRepository

api_bp = Blueprint('api', __name__, url_prefix='/api')


@api_bp.route('/questions/<int:question_id>/clos', methods=['POST'])
def link_question_to_clos(question_id):
    """Replace all CLO links of a question.

    Body: {"mappings": [{"clo_id": 1, "marks_allocated": 5}, ...]}
    """
    data = request.get_json(silent=True)
    logging.debug(f"Received request to relink question {question_id}: {data}")

    if not data or not isinstance(data.get('mappings'), list):
        logging.warning("Missing mappings list for question CLO update")
        return jsonify({'success': False, 'message': 'Missing required data: mappings'}), 400
    if any(not isinstance(m, dict) or 'clo_id' not in m for m in data['mappings']):
        return jsonify({'success': False, 'message': 'Each mapping needs a clo_id'}), 400

    def relink():
        links = OutcomeRepository(db.session).link_question_to_clos(question_id, data['mappings'])
        return {
            'success': True,
            'message': 'Question CLO mappings updated successfully',
            'question_id': question_id,
            'mappings': [{'clo_id': link.clo_id, 'marks_allocated': link.marks_allocated} for link in links]
        }

    return call_service(relink, f"Error mapping question {question_id} to CLOs")


@api_bp.route('/clo-plo-mappings/bulk', methods=['POST'])
def bulk_insert_clo_plo_mappings():
    """Insert many CLO-PLO mappings at once.

    Body: {"mappings": [{"clo_id": 1, "plo_id": 2, "mapping_strength": 3}, ...]}
    """
    data = request.get_json(silent=True)
    if not data or not isinstance(data.get('mappings'), list) or not data['mappings']:
        return jsonify({'success': False, 'message': 'Missing required data: mappings'}), 400

    try:
        rows = [
            (int(m['clo_id']), int(m['plo_id']), m.get('mapping_strength'))
            for m in data['mappings']
        ]
    except (KeyError, TypeError, ValueError):
        logging.warning(f"Malformed CLO-PLO mapping payload: {data['mappings']}")
        return jsonify({'success': False, 'message': 'Each mapping needs integer clo_id and plo_id'}), 400

    def insert_rows():
        inserted = OutcomeRepository(db.session).bulk_insert_clo_plo_mappings(rows)
        return {'success': True, 'message': f'{inserted} CLO-PLO mapping(s) created', 'inserted': inserted}

    return call_service(insert_rows, "Error inserting CLO-PLO mappings")
