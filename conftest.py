import os
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

# Keep test runs quiet and out of app.log
os.environ.setdefault('LOG_LEVEL', 'ERROR')
os.environ.setdefault('LOG_FILE', os.devnull)

from app import create_app
from models import (
    db, AcademicSession, Assessment, AttainmentThreshold, CLOPLOMapping, Course,
    CourseCLOAttainmentSummary, CourseLearningOutcome, CourseOffering, Degree, Enrollment,
    IndirectAttainmentResult, Mark, ProgramLearningOutcome, Question, QuestionCLOMapping,
    Semester, SemesterResult, Student
)
from services.outcome_repository import OutcomeRepository


class OBEBuilder:
    """Small row factories for tests; every call flushes so ids are available"""

    def __init__(self, session):
        self.session = session
        self._counter = 0
        self._clock = datetime(2024, 1, 1, 9, 0, 0)

    def _next(self):
        self._counter += 1
        return self._counter

    def tick(self):
        """Strictly increasing timestamps for created_at ordering"""
        self._clock += timedelta(minutes=1)
        return self._clock

    def _add(self, instance):
        self.session.add(instance)
        self.session.flush()
        return instance

    def degree(self, code=None):
        n = self._next()
        return self._add(Degree(code=code or f"DEG{n}", name=f"Degree {n}"))

    def academic_session(self, name=None):
        return self._add(AcademicSession(name=name or f"Session {self._next()}"))

    def semester(self, name=None):
        return self._add(Semester(name=name or f"Semester {self._next()}"))

    def course(self, degree=None, credit_hours=3, code=None):
        n = self._next()
        return self._add(Course(
            code=code or f"CSE{100 + n}",
            name=f"Course {n}",
            credit_hours=Decimal(str(credit_hours)),
            degree_id=degree.id if degree else None
        ))

    def offering(self, course, academic_session=None, semester=None, created_at=None):
        return self._add(CourseOffering(
            course_id=course.id,
            academic_session_id=academic_session.id if academic_session else None,
            semester_id=semester.id if semester else None,
            section='A',
            created_at=created_at or self.tick()
        ))

    def student(self, name=None):
        n = self._next()
        return self._add(Student(registration_no=f"2024-{n:05d}", full_name=name or f"Student {n}"))

    def enroll(self, student, offering):
        return self._add(Enrollment(student_id=student.id, course_offering_id=offering.id))

    def clo(self, course, code=None):
        return self._add(CourseLearningOutcome(
            code=code or f"CLO{self._next()}", description="Outcome", course_id=course.id
        ))

    def plo(self, degree, code=None):
        return self._add(ProgramLearningOutcome(
            code=code or f"PLO{self._next()}", description="Program outcome", degree_id=degree.id
        ))

    def assessment(self, offering, weightage=100, title=None):
        return self._add(Assessment(
            course_offering_id=offering.id,
            title=title or f"Assessment {self._next()}",
            weightage=Decimal(str(weightage))
        ))

    def question(self, assessment, max_marks=100, clo=None):
        return self._add(Question(
            assessment_id=assessment.id,
            number=self._next(),
            max_marks=Decimal(str(max_marks)),
            clo_id=clo.id if clo else None
        ))

    def link(self, question, clo, marks_allocated=None):
        return self._add(QuestionCLOMapping(question_id=question.id, clo_id=clo.id, marks_allocated=marks_allocated))

    def mark(self, student, question, obtained):
        value = None if obtained is None else Decimal(str(obtained))
        return self._add(Mark(student_id=student.id, question_id=question.id, obtained_marks=value))

    def threshold(self, percentage, is_active=True):
        return self._add(AttainmentThreshold(
            passing_percentage=Decimal(str(percentage)), is_active=is_active, created_at=self.tick()
        ))

    def indirect(self, offering, clo, score):
        return self._add(IndirectAttainmentResult(
            course_offering_id=offering.id, clo_id=clo.id, average_score=Decimal(str(score))
        ))

    def clo_plo(self, clo, plo, strength=2):
        return self._add(CLOPLOMapping(clo_id=clo.id, plo_id=plo.id, mapping_strength=strength))

    def clo_summary(self, offering, clo, combined, threshold=50):
        combined = Decimal(str(combined))
        return self._add(CourseCLOAttainmentSummary(
            course_offering_id=offering.id, clo_id=clo.id,
            direct_attainment=combined, indirect_attainment=Decimal('0'),
            combined_attainment=combined, threshold=Decimal(str(threshold)),
            attained=combined >= Decimal(str(threshold))
        ))

    def semester_result(self, student, semester, gpa, credit_hours):
        return self._add(SemesterResult(
            student_id=student.id, semester_id=semester.id,
            gpa=Decimal(str(gpa)), total_credit_hours=Decimal(str(credit_hours))
        ))


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def session(app):
    with app.app_context():
        yield db.session


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def builder(session):
    return OBEBuilder(session)


@pytest.fixture
def repository(session):
    return OutcomeRepository(session)
