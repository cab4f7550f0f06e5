import argparse
import random
import sys
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from faker import Faker

from models import (
    db, AcademicSession, Assessment, AttainmentThreshold, CLOPLOMapping, Course,
    CourseLearningOutcome, CourseOffering, Degree, Enrollment, IndirectAttainmentResult,
    Log, Mark, ProgramLearningOutcome, Question, QuestionCLOMapping, Semester, Student
)

PROGRAM_OUTCOMES = [
    ("PO1", "Apply knowledge of mathematics, science and computing to complex engineering problems."),
    ("PO2", "Identify, formulate and analyze complex engineering problems."),
    ("PO3", "Design solutions for complex problems that meet specified needs."),
    ("PO4", "Conduct investigations using research-based knowledge and methods."),
    ("PO5", "Create, select and apply appropriate techniques and modern tools."),
    ("PO6", "Communicate effectively and function in teams."),
]

COURSES = [
    ("CSE101", "Introduction to Programming", Decimal('3.0')),
    ("CSE201", "Data Structures", Decimal('3.0')),
    ("CSE250", "Computer Networks", Decimal('1.5')),
]

# (title, type, weightage, number of questions)
ASSESSMENT_PLAN = [
    ("Quiz 1", "Quiz", Decimal('20'), 3),
    ("Midterm Exam", "Midterm", Decimal('30'), 4),
    ("Final Exam", "Final", Decimal('50'), 5),
]

def _get_or_create(session, model, **filters):
    instance = session.query(model).filter_by(**filters).first()
    if instance is None:
        instance = model(**filters)
        session.add(instance)
        session.flush()
    return instance

def _half_marks(value):
    """Round to the nearest half mark"""
    return (Decimal(str(value)) * 2).quantize(Decimal('1'), rounding=ROUND_HALF_UP) / 2

def generate_students(session, fake, rng, degree, count):
    students = []
    year = date.today().year
    for _ in range(count):
        student = Student(
            registration_no=f"{year}-{fake.unique.random_int(min=10000, max=99999)}",
            full_name=fake.name(),
            degree_id=degree.id
        )
        students.append(student)
    session.add_all(students)
    session.flush()
    return students

def generate_course(session, fake, rng, degree, academic_session, semester, plos, code, name, credit_hours):
    """Create one course with CLOs, an offering, assessments and questions"""
    course = Course(code=code, name=name, credit_hours=credit_hours, degree_id=degree.id)
    session.add(course)
    session.flush()

    clos = []
    for number in range(1, rng.randint(3, 4) + 1):
        clo = CourseLearningOutcome(
            code=f"CLO{number}",
            description=fake.sentence(nb_words=10),
            course_id=course.id
        )
        clos.append(clo)
    session.add_all(clos)
    session.flush()

    # Every CLO supports one or two PLOs
    for clo in clos:
        for plo in rng.sample(plos, rng.randint(1, 2)):
            session.add(CLOPLOMapping(clo_id=clo.id, plo_id=plo.id, mapping_strength=rng.randint(1, 3)))

    offering = CourseOffering(
        course_id=course.id,
        academic_session_id=academic_session.id,
        semester_id=semester.id,
        section=rng.choice(["A", "B"])
    )
    session.add(offering)
    session.flush()

    start = date.today() - timedelta(days=120)
    questions = []
    for index, (title, assessment_type, weightage, question_count) in enumerate(ASSESSMENT_PLAN):
        max_marks = [Decimal(rng.choice([5, 10, 10, 15, 20])) for _ in range(question_count)]
        assessment = Assessment(
            course_offering_id=offering.id,
            title=title,
            assessment_type=assessment_type,
            total_marks=sum(max_marks),
            weightage=weightage,
            assessment_date=start + timedelta(days=30 * (index + 1))
        )
        session.add(assessment)
        session.flush()

        for number, marks in enumerate(max_marks, start=1):
            question = Question(
                assessment_id=assessment.id,
                number=number,
                text=fake.sentence(nb_words=8),
                max_marks=marks,
                clo_id=rng.choice(clos).id
            )
            session.add(question)
            questions.append(question)
    session.flush()

    # Some questions also assess a second CLO
    for question in questions:
        others = [clo for clo in clos if clo.id != question.clo_id]
        if others and rng.random() < 0.25:
            session.add(QuestionCLOMapping(
                question_id=question.id,
                clo_id=rng.choice(others).id,
                marks_allocated=_half_marks(question.max_marks / 2)
            ))

    for clo in clos:
        for _ in range(rng.randint(1, 2)):
            session.add(IndirectAttainmentResult(
                course_offering_id=offering.id,
                clo_id=clo.id,
                survey_title=f"{code} course exit survey",
                average_score=Decimal(str(round(rng.uniform(2.5, 5.0), 3)))
            ))

    return offering, questions

def generate_marks(session, rng, students, questions, missing_rate=0.05):
    """Marks drawn around each student's ability; a few are left unentered"""
    marks = []
    for student in students:
        ability = rng.uniform(0.35, 0.95)
        for question in questions:
            if rng.random() < missing_rate:
                continue
            ratio = min(1.0, max(0.0, rng.gauss(ability, 0.15)))
            marks.append(Mark(
                student_id=student.id,
                question_id=question.id,
                obtained_marks=_half_marks(Decimal(str(ratio)) * question.max_marks)
            ))
    session.add_all(marks)
    return len(marks)

def populate_demo_data(session, seed=None, student_count=30):
    """Seed one degree, session and semester with courses, a cohort and their marks.

    Returns the ids needed to run the attainment and grade calculations.
    """
    fake = Faker()
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)

    degree_code = f"CSE-{fake.unique.random_int(min=100, max=999)}"
    degree = Degree(code=degree_code, name="BSc in Computer Science and Engineering")
    session.add(degree)
    session.flush()

    year = date.today().year
    academic_session = _get_or_create(session, AcademicSession, name=f"{year}-{year + 1}")
    semester = _get_or_create(session, Semester, name=f"Spring {year}")

    plos = [ProgramLearningOutcome(code=code, description=description, degree_id=degree.id)
            for code, description in PROGRAM_OUTCOMES]
    session.add_all(plos)
    session.flush()

    if session.query(AttainmentThreshold).filter_by(is_active=True).count() == 0:
        session.add(AttainmentThreshold(passing_percentage=Decimal('50'), is_active=True,
                                        description="Default passing percentage"))

    students = generate_students(session, fake, rng, degree, student_count)

    offering_ids = []
    mark_count = 0
    for code, name, credit_hours in COURSES:
        offering, questions = generate_course(
            session, fake, rng, degree, academic_session, semester, plos,
            f"{code}-{degree_code[-3:]}", name, credit_hours
        )
        session.add_all([Enrollment(student_id=s.id, course_offering_id=offering.id) for s in students])
        mark_count += generate_marks(session, rng, students, questions)
        offering_ids.append(offering.id)

    session.add(Log(action="GENERATE_DEMO_DATA",
                    description=f"Generated {len(offering_ids)} offerings, {len(students)} students, {mark_count} marks"))
    session.commit()

    return {
        'degree_id': degree.id,
        'academic_session_id': academic_session.id,
        'semester_id': semester.id,
        'course_offering_ids': offering_ids,
        'student_ids': [s.id for s in students]
    }

def main():
    parser = argparse.ArgumentParser(description='Generate demo data for the OBE attainment engine')
    parser.add_argument('--students', type=int, default=30, help='Number of students in the cohort')
    parser.add_argument('--seed', type=int, default=None, help='Random seed for reproducible data')
    parser.add_argument('--calculate', action='store_true', help='Run attainment and grade calculations afterwards')
    args = parser.parse_args()

    from app import create_app
    app = create_app()

    with app.app_context():
        try:
            ids = populate_demo_data(db.session, seed=args.seed, student_count=args.students)
        except Exception as e:
            db.session.rollback()
            print(f"Error generating demo data: {e}")
            sys.exit(1)

        print(f"Created degree {ids['degree_id']} with offerings {ids['course_offering_ids']} "
              f"and {len(ids['student_ids'])} students")

        if args.calculate:
            from services.attainment_service import AttainmentService
            from services.grade_service import GradeService
            from services.outcome_repository import OutcomeRepository

            repository = OutcomeRepository(db.session)
            attainment = AttainmentService(repository)
            grades = GradeService(repository, max_workers=app.config['GRADE_BATCH_WORKERS'])
            for offering_id in ids['course_offering_ids']:
                clo_result = attainment.calculate_clo_attainment(offering_id)
                batch = grades.batch_calculate_grades(offering_id)
                print(f"Offering {offering_id}: {len(clo_result['results'])} CLOs, "
                      f"{batch['success_count']}/{batch['total_students']} students graded")
            plo_result = attainment.calculate_plo_attainment(ids['degree_id'], ids['academic_session_id'])
            for plo in plo_result['results']:
                print(f"  {plo['plo_code']}: {plo['attainment']}% ({'attained' if plo['attained'] else 'not attained'})")

if __name__ == "__main__":
    main()
