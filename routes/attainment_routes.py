from flask import Blueprint, jsonify

from models import db
from routes.responses import call_service, jsonable
from services.attainment_service import AttainmentService
from services.outcome_repository import OutcomeRepository

attainment_bp = Blueprint('attainment', __name__, url_prefix='/attainment')


def _service():
    return AttainmentService(OutcomeRepository(db.session))


@attainment_bp.route('/clo/<int:offering_id>/calculate', methods=['POST'])
def calculate_clo_attainment(offering_id):
    """Recalculate and store CLO attainment of a course offering"""
    return call_service(
        lambda: _service().calculate_clo_attainment(offering_id),
        f"Error calculating CLO attainment for offering {offering_id}"
    )


@attainment_bp.route('/clo/<int:offering_id>', methods=['GET'])
def clo_attainment_summary(offering_id):
    return call_service(
        lambda: _service().get_clo_attainment_summary(offering_id),
        f"Error loading CLO attainment for offering {offering_id}"
    )


@attainment_bp.route('/clo/<int:offering_id>/overview', methods=['GET'])
def course_overall_summary(offering_id):
    return call_service(
        lambda: _service().get_course_overall_summary(offering_id),
        f"Error loading course summary for offering {offering_id}"
    )


@attainment_bp.route('/clo/<int:offering_id>/student/<int:student_id>', methods=['GET'])
def student_clo_attainment(offering_id, student_id):
    return call_service(
        lambda: _service().calculate_student_clo_attainment(student_id, offering_id),
        f"Error calculating CLO attainment of student {student_id}"
    )


@attainment_bp.route('/plo/<int:degree_id>/<int:session_id>/calculate', methods=['POST'])
def calculate_plo_attainment(degree_id, session_id):
    """Roll stored CLO attainment up into PLO attainment for a degree and session"""
    return call_service(
        lambda: _service().calculate_plo_attainment(degree_id, session_id),
        f"Error calculating PLO attainment for degree {degree_id}"
    )


@attainment_bp.route('/plo/<int:degree_id>/<int:session_id>', methods=['GET'])
def plo_attainment_summary(degree_id, session_id):
    return call_service(
        lambda: _service().get_plo_attainment_summary(degree_id, session_id),
        f"Error loading PLO attainment for degree {degree_id}"
    )


@attainment_bp.route('/threshold', methods=['GET'])
def current_threshold():
    threshold = _service().resolve_threshold()
    return jsonify({'success': True, 'threshold': jsonable(threshold)})
