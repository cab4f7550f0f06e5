"""Course grades, GPA, CGPA, batch grading and grade distribution."""

from decimal import Decimal

import pytest

from models import CourseResult, Log, SemesterResult
from services.cancellation import CancellationToken
from services.grade_service import DEFAULT_GRADE, GradeBand, GradeService
from services.outcome_repository import OutcomeRepository


def _graded_offering(builder, weightages=(40, 60), max_marks=(20, 50), course=None, semester=None):
    course = course or builder.course()
    offering = builder.offering(course, semester=semester)
    questions = []
    for weightage, marks in zip(weightages, max_marks):
        assessment = builder.assessment(offering, weightage=weightage)
        questions.append(builder.question(assessment, max_marks=marks))
    return offering, questions


class FailingRepository(OutcomeRepository):
    """Raises while saving the result of one chosen student"""

    def __init__(self, session, failing_student_id):
        super().__init__(session)
        self.failing_student_id = failing_student_id

    def upsert_course_result(self, student_id, *args, **kwargs):
        if student_id == self.failing_student_id:
            raise RuntimeError("disk full")
        return super().upsert_course_result(student_id, *args, **kwargs)


class CancellingRepository(OutcomeRepository):
    """Cancels the running batch right after the first result is saved"""

    def __init__(self, session, token):
        super().__init__(session)
        self.token = token

    def upsert_course_result(self, *args, **kwargs):
        super().upsert_course_result(*args, **kwargs)
        self.token.cancel('Stopped by operator')


def test_default_scale_boundaries_resolve_to_one_grade(app, repository):
    service = GradeService(repository)
    bands = service.load_grade_bands()
    assert len(bands) == 10

    for band in bands:
        for edge in (band.min_percentage, band.max_percentage):
            matches = [b for b in bands if b.min_percentage <= edge <= b.max_percentage]
            assert len(matches) == 1
            assert GradeService.match_grade(edge, bands).letter_grade == band.letter_grade


@pytest.mark.parametrize('percentage, letter', [
    (Decimal('100'), 'A+'),
    (Decimal('80'), 'A+'),
    (Decimal('79.995'), 'A+'),
    (Decimal('79.994'), 'A'),
    (Decimal('60'), 'B'),
    (Decimal('40'), 'D'),
    (Decimal('39.99'), 'F'),
    (Decimal('0'), 'F'),
])
def test_letter_grade_lookup(repository, percentage, letter):
    assert GradeService(repository).get_letter_grade(percentage)['letter_grade'] == letter


def test_no_matching_band_falls_back_to_fail():
    bands = [GradeBand('A', Decimal('4.00'), Decimal('80'), Decimal('100'), 'Excellent')]
    assert GradeService.match_grade(Decimal('50'), bands) == DEFAULT_GRADE
    assert GradeService.match_grade(Decimal('120'), bands).remarks == 'Fail'


def test_weighted_final_grade_is_persisted(session, builder, repository):
    offering, (quiz, final) = _graded_offering(builder)
    student = builder.student()
    builder.enroll(student, offering)
    builder.mark(student, quiz, 10)
    builder.mark(student, final, 50)
    session.commit()

    result = GradeService(repository).calculate_final_grade(student.id, offering.id)

    assert result['success'] is True
    assert result['final_percentage'] == Decimal('80')
    assert result['letter_grade'] == 'A+'
    assert result['grade_points'] == Decimal('4.00')
    assert result['remarks'] == 'Outstanding'
    assert [a['weighted_score'] for a in result['assessments']] == [Decimal('20'), Decimal('60')]

    stored = session.query(CourseResult).filter_by(student_id=student.id, course_offering_id=offering.id).one()
    assert stored.letter_grade == 'A+'
    assert stored.percentage == Decimal('80')
    assert stored.total_marks == Decimal('80')
    assert result['obtained_marks'] == Decimal('60')


def test_weightages_above_hundred_are_not_rescaled(session, builder, repository):
    offering, (first, second) = _graded_offering(builder, weightages=(60, 60), max_marks=(10, 10))
    student = builder.student()
    builder.enroll(student, offering)
    builder.mark(student, first, 5)
    builder.mark(student, second, 5)
    session.commit()

    result = GradeService(repository).calculate_final_grade(student.id, offering.id)

    # 50% on both: 30 + 30 = 60, where a rescaled total would be 50
    assert result['total_weightage'] == Decimal('120')
    assert result['final_percentage'] == Decimal('60')
    assert result['letter_grade'] == 'B'


def test_zero_weightage_and_empty_assessment_give_zero():
    outcome = GradeService.compute_final_percentage(1, [], {}, {})
    assert outcome['final_percentage'] == Decimal('0')

    class Weighted:
        def __init__(self, id, weightage):
            self.id = id
            self.title = f"A{id}"
            self.weightage = weightage

    outcome = GradeService.compute_final_percentage(
        1, [Weighted(1, Decimal('0'))], {1: {10: Decimal('10')}}, {(1, 10): Decimal('10')}
    )
    assert outcome['final_percentage'] == Decimal('0')

    outcome = GradeService.compute_final_percentage(1, [Weighted(2, Decimal('100'))], {}, {})
    assert outcome['final_percentage'] == Decimal('0')
    assert outcome['assessments'][0]['total_marks'] == Decimal('0')


def test_offering_without_assessments(session, builder, repository):
    offering = builder.offering(builder.course())
    student = builder.student()
    session.commit()

    result = GradeService(repository).calculate_final_grade(student.id, offering.id)
    assert result == {'success': False, 'message': 'No assessments found for this course offering'}


def test_batch_continues_past_a_failing_student(session, builder):
    offering, (quiz, final) = _graded_offering(builder)
    students = [builder.student() for _ in range(3)]
    for index, student in enumerate(students):
        builder.enroll(student, offering)
        builder.mark(student, quiz, 10 + index * 5)
        builder.mark(student, final, 30 + index * 10)
    session.commit()
    failing_id = students[1].id

    result = GradeService(FailingRepository(session, failing_id)).batch_calculate_grades(offering.id)

    assert result['success'] is True
    assert result['total_students'] == 3
    assert result['success_count'] == 2
    assert result['fail_count'] == 1
    assert result['cancelled'] is False
    failed = [entry for entry in result['results'] if not entry['success']]
    assert failed == [{
        'student_id': failing_id,
        'registration_no': students[1].registration_no,
        'full_name': students[1].full_name,
        'success': False,
        'error': 'disk full'
    }]
    saved = {row.student_id for row in session.query(CourseResult).all()}
    assert saved == {students[0].id, students[2].id}
    assert session.query(Log).filter_by(action='BATCH_CALCULATE_GRADES').count() == 1


def test_pre_cancelled_batch_processes_nobody(session, builder, repository):
    offering, (quiz, _) = _graded_offering(builder)
    for _ in range(2):
        builder.enroll(builder.student(), offering)
    session.commit()
    token = CancellationToken()
    token.cancel()

    result = GradeService(repository).batch_calculate_grades(offering.id, cancel_token=token)

    assert result['cancelled'] is True
    assert result['processed'] == 0
    assert session.query(CourseResult).count() == 0


def test_cancellation_stops_before_the_next_save(session, builder):
    offering, (quiz, _) = _graded_offering(builder)
    for _ in range(3):
        builder.enroll(builder.student(), offering)
    session.commit()
    token = CancellationToken()

    result = GradeService(CancellingRepository(session, token)).batch_calculate_grades(offering.id, cancel_token=token)

    assert result['cancelled'] is True
    assert result['processed'] == 1
    assert result['success_count'] == 1
    assert session.query(CourseResult).count() == 1


def test_parallel_batch_matches_serial(session, builder, repository):
    offering, (quiz, final) = _graded_offering(builder)
    for index in range(6):
        student = builder.student()
        builder.enroll(student, offering)
        builder.mark(student, quiz, index * 3)
        builder.mark(student, final, 50 - index * 7)
    session.commit()

    serial = GradeService(repository).batch_calculate_grades(offering.id)
    parallel = GradeService(repository, max_workers=4).batch_calculate_grades(offering.id)

    assert parallel['success_count'] == serial['success_count'] == 6
    assert parallel['results'] == serial['results']


def test_semester_gpa_excludes_courses_without_result(session, builder, repository):
    semester = builder.semester()
    student = builder.student()
    strong, (s_quiz, s_final) = _graded_offering(builder, course=builder.course(credit_hours=3), semester=semester)
    lab, (l_quiz, l_final) = _graded_offering(builder, course=builder.course(credit_hours=1.5), semester=semester)
    pending, _ = _graded_offering(builder, course=builder.course(credit_hours=3), semester=semester)
    for offering in (strong, lab, pending):
        builder.enroll(student, offering)
    builder.mark(student, s_quiz, 20)
    builder.mark(student, s_final, 50)
    builder.mark(student, l_quiz, 12)
    builder.mark(student, l_final, 30)
    session.commit()

    service = GradeService(repository)
    assert service.calculate_final_grade(student.id, strong.id)['letter_grade'] == 'A+'
    assert service.calculate_final_grade(student.id, lab.id)['letter_grade'] == 'B'

    result = service.calculate_semester_gpa(student.id, semester.id)

    # (4.00 * 3 + 3.00 * 1.5) / 4.5
    assert result['gpa'] == Decimal('3.67')
    assert result['total_credit_hours'] == Decimal('4.5')
    assert len(result['excluded_courses']) == 1
    stored = session.query(SemesterResult).filter_by(student_id=student.id, semester_id=semester.id).one()
    assert stored.gpa == Decimal('3.67')


def test_semester_without_enrollments(session, builder, repository):
    student = builder.student()
    semester = builder.semester()
    session.commit()

    result = GradeService(repository).calculate_semester_gpa(student.id, semester.id)
    assert result == {'success': False, 'message': 'No enrollments found for this semester'}


def test_cgpa_is_credit_weighted(session, builder, repository):
    student = builder.student()
    builder.semester_result(student, builder.semester('Fall 2023'), '3.50', 15)
    builder.semester_result(student, builder.semester('Spring 2024'), '3.00', 12)
    session.commit()

    result = GradeService(repository).calculate_cgpa(student.id)

    assert result['cgpa'] == Decimal('3.28')
    assert result['total_credit_hours'] == Decimal('27')


def test_cgpa_without_semester_results(session, builder, repository):
    student = builder.student()
    session.commit()

    assert GradeService(repository).calculate_cgpa(student.id) == {
        'success': False, 'message': 'No semester results found'
    }


def test_grade_distribution(session, builder, repository):
    offering, (quiz, final) = _graded_offering(builder)
    # Finals of 80%, 80%, 60% and 20% overall
    for quiz_marks, final_marks in ((10, 50), (16, 40), (12, 30), (4, 10)):
        student = builder.student()
        builder.enroll(student, offering)
        builder.mark(student, quiz, quiz_marks)
        builder.mark(student, final, final_marks)
    session.commit()
    service = GradeService(repository)

    assert service.get_grade_distribution(offering.id)['success'] is False
    service.batch_calculate_grades(offering.id)
    result = service.get_grade_distribution(offering.id)

    distribution = {row['letter_grade']: (row['count'], row['percentage']) for row in result['distribution']}
    assert distribution == {
        'A+': (2, Decimal('50.00')),
        'B': (1, Decimal('25.00')),
        'F': (1, Decimal('25.00')),
    }
    assert [row['letter_grade'] for row in result['distribution']] == ['A+', 'B', 'F']
    stats = result['statistics']
    assert stats['total_students'] == 4
    assert stats['max_percentage'] == Decimal('80.00')
    assert stats['min_percentage'] == Decimal('20.00')
    assert stats['average_percentage'] == Decimal('60.00')
    assert stats['average_gpa'] == Decimal('2.75')
