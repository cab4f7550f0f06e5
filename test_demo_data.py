"""Range and consistency checks over a Faker-generated cohort."""

from decimal import Decimal

from generate_demo_data import populate_demo_data
from models import CourseResult, Enrollment, Mark
from services.attainment_service import AttainmentService
from services.grade_service import GradeService

ZERO = Decimal('0')
HUNDRED = Decimal('100')


def test_generated_cohort_is_consistent(session):
    ids = populate_demo_data(session, seed=1234, student_count=12)

    assert len(ids['course_offering_ids']) == 3
    assert len(ids['student_ids']) == 12
    assert session.query(Enrollment).count() == 36
    assert session.query(Mark).count() > 0


def test_attainment_and_grades_stay_in_range(session, repository):
    ids = populate_demo_data(session, seed=99, student_count=15)
    attainment = AttainmentService(repository)
    grades = GradeService(repository, max_workers=3)

    for offering_id in ids['course_offering_ids']:
        clo_result = attainment.calculate_clo_attainment(offering_id)
        assert clo_result['success'] is True
        for row in clo_result['results']:
            for key in ('direct_attainment', 'indirect_attainment', 'combined_attainment'):
                assert ZERO <= row[key] <= HUNDRED
            expected = (row['direct_attainment'] * Decimal('0.8') + row['indirect_attainment'] * Decimal('0.2'))
            assert abs(row['combined_attainment'] - expected) < Decimal('0.001')

        batch = grades.batch_calculate_grades(offering_id)
        assert batch['fail_count'] == 0
        assert batch['success_count'] == 15

    plo_result = attainment.calculate_plo_attainment(ids['degree_id'], ids['academic_session_id'])
    assert plo_result['success'] is True
    for row in plo_result['results']:
        assert ZERO <= row['attainment'] <= HUNDRED

    for result in session.query(CourseResult).all():
        # Weightages add up to 100, so final percentages cannot leave the range
        assert ZERO <= result.percentage <= HUNDRED

    for student_id in ids['student_ids'][:3]:
        gpa = grades.calculate_semester_gpa(student_id, ids['semester_id'])
        assert Decimal('0') <= gpa['gpa'] <= Decimal('4')
        cgpa = grades.calculate_cgpa(student_id)
        assert cgpa['cgpa'] == gpa['gpa']
