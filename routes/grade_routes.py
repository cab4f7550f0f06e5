from flask import Blueprint, current_app

from models import db
from routes.responses import call_service
from services.grade_service import GradeService
from services.outcome_repository import OutcomeRepository

grade_bp = Blueprint('grades', __name__, url_prefix='/grades')


def _service():
    workers = current_app.config.get('GRADE_BATCH_WORKERS', 1)
    return GradeService(OutcomeRepository(db.session), max_workers=workers)


@grade_bp.route('/offering/<int:offering_id>/student/<int:student_id>', methods=['POST'])
def calculate_final_grade(offering_id, student_id):
    return call_service(
        lambda: _service().calculate_final_grade(student_id, offering_id),
        f"Error calculating grade of student {student_id} in offering {offering_id}"
    )


@grade_bp.route('/offering/<int:offering_id>/batch', methods=['POST'])
def batch_calculate_grades(offering_id):
    """Grade every enrolled student; per-student failures are reported, not raised"""
    return call_service(
        lambda: _service().batch_calculate_grades(offering_id),
        f"Error batch grading offering {offering_id}"
    )


@grade_bp.route('/offering/<int:offering_id>/distribution', methods=['GET'])
def grade_distribution(offering_id):
    return call_service(
        lambda: _service().get_grade_distribution(offering_id),
        f"Error loading grade distribution of offering {offering_id}"
    )


@grade_bp.route('/semester/<int:semester_id>/student/<int:student_id>', methods=['POST'])
def calculate_semester_gpa(semester_id, student_id):
    return call_service(
        lambda: _service().calculate_semester_gpa(student_id, semester_id),
        f"Error calculating semester GPA of student {student_id}"
    )


@grade_bp.route('/student/<int:student_id>/cgpa', methods=['GET'])
def calculate_cgpa(student_id):
    return call_service(
        lambda: _service().calculate_cgpa(student_id),
        f"Error calculating CGPA of student {student_id}"
    )
