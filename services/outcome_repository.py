"""
Data access for the attainment and grade engines.

Every read here is batched per course offering (or per degree/session) so the
services never issue one query per student and question. Writes are
idempotent upserts keyed on the summary tables' unique constraints.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.dialects import mysql, postgresql, sqlite

from models import (
    AcademicSession, Assessment, AttainmentThreshold, CLOPLOMapping, Course,
    CourseCLOAttainmentSummary, CourseLearningOutcome, CourseOffering,
    CourseResult, Degree, Enrollment, GradePoint, GradeScale,
    IndirectAttainmentResult, Log, Mark, ProgramLearningOutcome,
    ProgramPLOAttainmentSummary, Question, QuestionCLOMapping, Semester,
    SemesterResult, Student
)
from services.mark_aggregator import to_decimal

VALID_MAPPING_STRENGTHS = (1, 2, 3)


class RecordNotFound(LookupError):
    """A requested row (offering, student, question, ...) does not exist"""


def parse_marks_allocated(value):
    """Marks allocated to one CLO link as a Decimal, or None when not given.

    Raises ValueError for non-numeric, non-finite or negative values.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid marks allocated: {value!r}")
    try:
        allocated = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid marks allocated: {value!r}")
    if not allocated.is_finite() or allocated < 0:
        raise ValueError(f"Invalid marks allocated: {value!r}. Must be a number of at least 0")
    return allocated


class OutcomeRepository:
    """Reads and writes everything the OBE calculations need through one session"""

    def __init__(self, session):
        self.session = session

    # ---- lookups -------------------------------------------------------

    def get_course_offering(self, course_offering_id):
        offering = self.session.get(CourseOffering, course_offering_id)
        if offering is None:
            raise RecordNotFound(f"Course offering {course_offering_id} not found")
        return offering

    def get_degree(self, degree_id):
        degree = self.session.get(Degree, degree_id)
        if degree is None:
            raise RecordNotFound(f"Degree {degree_id} not found")
        return degree

    def get_academic_session(self, academic_session_id):
        academic_session = self.session.get(AcademicSession, academic_session_id)
        if academic_session is None:
            raise RecordNotFound(f"Academic session {academic_session_id} not found")
        return academic_session

    def get_student(self, student_id):
        student = self.session.get(Student, student_id)
        if student is None:
            raise RecordNotFound(f"Student {student_id} not found")
        return student

    def get_semester(self, semester_id):
        semester = self.session.get(Semester, semester_id)
        if semester is None:
            raise RecordNotFound(f"Semester {semester_id} not found")
        return semester

    def get_clos_for_offering(self, course_offering_id):
        offering = self.get_course_offering(course_offering_id)
        stmt = (
            select(CourseLearningOutcome)
            .where(CourseLearningOutcome.course_id == offering.course_id)
            .order_by(CourseLearningOutcome.code, CourseLearningOutcome.id)
        )
        return self.session.execute(stmt).scalars().all()

    def get_plos_for_degree(self, degree_id):
        stmt = (
            select(ProgramLearningOutcome)
            .where(ProgramLearningOutcome.degree_id == degree_id)
            .order_by(ProgramLearningOutcome.code, ProgramLearningOutcome.id)
        )
        return self.session.execute(stmt).scalars().all()

    def get_enrolled_students(self, course_offering_id):
        stmt = (
            select(Student)
            .join(Enrollment, Enrollment.student_id == Student.id)
            .where(Enrollment.course_offering_id == course_offering_id)
            .order_by(Student.id)
        )
        return self.session.execute(stmt).scalars().unique().all()

    def get_enrolled_student_ids(self, course_offering_id):
        stmt = (
            select(Enrollment.student_id)
            .where(Enrollment.course_offering_id == course_offering_id)
            .distinct()
            .order_by(Enrollment.student_id)
        )
        return list(self.session.execute(stmt).scalars().all())

    # ---- question / mark reads ----------------------------------------

    def get_clo_questions(self, course_offering_id):
        """Return {clo_id: {question_id: max_marks}} for the offering.

        A question counts for a CLO when its own clo_id names the CLO or a
        question_clo_mapping row links them; each question appears once per CLO.
        """
        primary_rows = self.session.execute(
            select(Question.clo_id, Question.id, Question.max_marks)
            .join(Assessment, Question.assessment_id == Assessment.id)
            .where(
                Assessment.course_offering_id == course_offering_id,
                Question.clo_id.isnot(None)
            )
        ).all()
        linked_rows = self.session.execute(
            select(QuestionCLOMapping.clo_id, Question.id, Question.max_marks)
            .join(Question, QuestionCLOMapping.question_id == Question.id)
            .join(Assessment, Question.assessment_id == Assessment.id)
            .where(Assessment.course_offering_id == course_offering_id)
        ).all()

        clo_questions = {}
        for clo_id, question_id, max_marks in list(primary_rows) + list(linked_rows):
            clo_questions.setdefault(clo_id, {})[question_id] = max_marks
        return clo_questions

    def get_assessments(self, course_offering_id):
        stmt = (
            select(Assessment)
            .where(Assessment.course_offering_id == course_offering_id)
            .order_by(Assessment.assessment_date, Assessment.id)
        )
        return self.session.execute(stmt).scalars().all()

    def get_assessment_questions(self, course_offering_id):
        """Return {assessment_id: {question_id: max_marks}}"""
        rows = self.session.execute(
            select(Question.assessment_id, Question.id, Question.max_marks)
            .join(Assessment, Question.assessment_id == Assessment.id)
            .where(Assessment.course_offering_id == course_offering_id)
        ).all()
        questions_by_assessment = {}
        for assessment_id, question_id, max_marks in rows:
            questions_by_assessment.setdefault(assessment_id, {})[question_id] = max_marks
        return questions_by_assessment

    def get_marks(self, course_offering_id, student_ids=None):
        """Return {(student_id, question_id): obtained_marks} from one joined read"""
        stmt = (
            select(Mark.student_id, Mark.question_id, Mark.obtained_marks)
            .join(Question, Mark.question_id == Question.id)
            .join(Assessment, Question.assessment_id == Assessment.id)
            .where(Assessment.course_offering_id == course_offering_id)
        )
        if student_ids is not None:
            stmt = stmt.where(Mark.student_id.in_(list(student_ids)))
        return {
            (student_id, question_id): obtained
            for student_id, question_id, obtained in self.session.execute(stmt)
        }

    def get_indirect_scores(self, course_offering_id):
        """Return {clo_id: [average_score, ...]} of survey results for the offering"""
        rows = self.session.execute(
            select(IndirectAttainmentResult.clo_id, IndirectAttainmentResult.average_score)
            .where(IndirectAttainmentResult.course_offering_id == course_offering_id)
        ).all()
        scores = {}
        for clo_id, average_score in rows:
            if average_score is not None:
                scores.setdefault(clo_id, []).append(average_score)
        return scores

    # ---- threshold / mapping reads ------------------------------------

    def get_active_threshold(self):
        stmt = (
            select(AttainmentThreshold)
            .where(AttainmentThreshold.is_active.is_(True))
            .order_by(AttainmentThreshold.created_at.desc(), AttainmentThreshold.id.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def get_clo_plo_mappings(self, plo_ids):
        """Return {plo_id: [(clo_id, mapping_strength), ...]}"""
        if not plo_ids:
            return {}
        rows = self.session.execute(
            select(CLOPLOMapping.plo_id, CLOPLOMapping.clo_id, CLOPLOMapping.mapping_strength)
            .where(CLOPLOMapping.plo_id.in_(list(plo_ids)))
            .order_by(CLOPLOMapping.plo_id, CLOPLOMapping.clo_id)
        ).all()
        mappings = {}
        for plo_id, clo_id, strength in rows:
            mappings.setdefault(plo_id, []).append((clo_id, strength))
        return mappings

    def get_latest_clo_combined(self, clo_ids, academic_session_id):
        """Return {clo_id: combined_attainment} from the newest offering of the session"""
        if not clo_ids:
            return {}
        rows = self.session.execute(
            select(CourseCLOAttainmentSummary.clo_id, CourseCLOAttainmentSummary.combined_attainment)
            .join(CourseOffering, CourseCLOAttainmentSummary.course_offering_id == CourseOffering.id)
            .where(
                CourseCLOAttainmentSummary.clo_id.in_(list(clo_ids)),
                CourseOffering.academic_session_id == academic_session_id
            )
            .order_by(CourseOffering.created_at.desc(), CourseOffering.id.desc())
        ).all()
        latest = {}
        for clo_id, combined in rows:
            # Rows arrive newest first, so the first value per CLO wins
            latest.setdefault(clo_id, combined)
        return latest

    # ---- grade reads ---------------------------------------------------

    def get_grade_points(self):
        """Grade points of the newest active scale, highest range first"""
        scale = self.session.execute(
            select(GradeScale)
            .where(GradeScale.is_active.is_(True))
            .order_by(GradeScale.created_at.desc(), GradeScale.id.desc())
            .limit(1)
        ).scalars().first()
        if scale is None:
            return []
        stmt = (
            select(GradePoint)
            .where(GradePoint.grade_scale_id == scale.id)
            .order_by(GradePoint.min_percentage.desc())
        )
        return self.session.execute(stmt).scalars().all()

    def get_semester_course_results(self, student_id, semester_id):
        """Enrolled courses of a semester with their recorded result, if any"""
        stmt = (
            select(
                CourseOffering.id.label('course_offering_id'),
                Course.code.label('course_code'),
                Course.name.label('course_name'),
                Course.credit_hours.label('credit_hours'),
                CourseResult.letter_grade.label('letter_grade'),
                CourseResult.grade_points.label('grade_points')
            )
            .select_from(Enrollment)
            .join(CourseOffering, Enrollment.course_offering_id == CourseOffering.id)
            .join(Course, CourseOffering.course_id == Course.id)
            .outerjoin(CourseResult, and_(
                CourseResult.student_id == Enrollment.student_id,
                CourseResult.course_offering_id == Enrollment.course_offering_id
            ))
            .where(Enrollment.student_id == student_id, CourseOffering.semester_id == semester_id)
            .order_by(Course.code)
        )
        return self.session.execute(stmt).all()

    def get_semester_results(self, student_id):
        stmt = (
            select(
                SemesterResult.semester_id.label('semester_id'),
                Semester.name.label('semester_name'),
                SemesterResult.total_credit_hours.label('total_credit_hours'),
                SemesterResult.gpa.label('gpa')
            )
            .join(Semester, SemesterResult.semester_id == Semester.id)
            .where(SemesterResult.student_id == student_id)
            .order_by(Semester.name)
        )
        return self.session.execute(stmt).all()

    def get_course_results(self, course_offering_id):
        stmt = (
            select(CourseResult)
            .where(CourseResult.course_offering_id == course_offering_id)
            .order_by(CourseResult.student_id)
        )
        return self.session.execute(stmt).scalars().all()

    # ---- summary reads -------------------------------------------------

    def get_clo_summaries(self, course_offering_id):
        stmt = (
            select(CourseCLOAttainmentSummary, CourseLearningOutcome)
            .join(CourseLearningOutcome, CourseCLOAttainmentSummary.clo_id == CourseLearningOutcome.id)
            .where(CourseCLOAttainmentSummary.course_offering_id == course_offering_id)
            .order_by(CourseLearningOutcome.code)
        )
        return self.session.execute(stmt).all()

    def get_plo_summaries(self, degree_id, academic_session_id):
        stmt = (
            select(ProgramPLOAttainmentSummary, ProgramLearningOutcome)
            .join(ProgramLearningOutcome, ProgramPLOAttainmentSummary.plo_id == ProgramLearningOutcome.id)
            .where(
                ProgramPLOAttainmentSummary.degree_id == degree_id,
                ProgramPLOAttainmentSummary.academic_session_id == academic_session_id
            )
            .order_by(ProgramLearningOutcome.code)
        )
        return self.session.execute(stmt).all()

    # ---- upserts -------------------------------------------------------

    def _upsert(self, model, key_columns, values):
        """INSERT ... ON CONFLICT/DUPLICATE KEY UPDATE for the bound dialect"""
        now = datetime.now()
        row = dict(values)
        row['created_at'] = now
        row['updated_at'] = now
        update_values = {
            column: value for column, value in row.items()
            if column not in key_columns and column != 'created_at'
        }

        dialect_name = self.session.get_bind().dialect.name
        if dialect_name == 'sqlite':
            stmt = sqlite.insert(model).values(**row)
            stmt = stmt.on_conflict_do_update(index_elements=key_columns, set_=update_values)
        elif dialect_name == 'postgresql':
            stmt = postgresql.insert(model).values(**row)
            stmt = stmt.on_conflict_do_update(index_elements=key_columns, set_=update_values)
        elif dialect_name in ('mysql', 'mariadb'):
            stmt = mysql.insert(model).values(**row)
            stmt = stmt.on_duplicate_key_update(**update_values)
        else:
            raise NotImplementedError(f"Upsert is not supported for dialect '{dialect_name}'")

        self.session.execute(stmt)

    def upsert_clo_summary(self, course_offering_id, clo_id, direct, indirect, combined, threshold, attained):
        self._upsert(CourseCLOAttainmentSummary, ['course_offering_id', 'clo_id'], {
            'course_offering_id': course_offering_id,
            'clo_id': clo_id,
            'direct_attainment': direct,
            'indirect_attainment': indirect,
            'combined_attainment': combined,
            'threshold': threshold,
            'attained': attained
        })

    def upsert_plo_summary(self, degree_id, academic_session_id, plo_id, attainment, threshold, attained):
        self._upsert(ProgramPLOAttainmentSummary, ['degree_id', 'academic_session_id', 'plo_id'], {
            'degree_id': degree_id,
            'academic_session_id': academic_session_id,
            'plo_id': plo_id,
            'attainment': attainment,
            'threshold': threshold,
            'attained': attained
        })

    def upsert_course_result(self, student_id, course_offering_id, total_marks, percentage,
                             letter_grade, grade_points, remarks=None):
        self._upsert(CourseResult, ['student_id', 'course_offering_id'], {
            'student_id': student_id,
            'course_offering_id': course_offering_id,
            'total_marks': total_marks,
            'percentage': percentage,
            'letter_grade': letter_grade,
            'grade_points': grade_points,
            'remarks': remarks
        })

    def upsert_semester_result(self, student_id, semester_id, total_credit_hours, gpa):
        self._upsert(SemesterResult, ['student_id', 'semester_id'], {
            'student_id': student_id,
            'semester_id': semester_id,
            'total_credit_hours': total_credit_hours,
            'gpa': gpa
        })

    # ---- mapping writes ------------------------------------------------

    def get_question_clo_links(self, question_id):
        stmt = (
            select(QuestionCLOMapping)
            .where(QuestionCLOMapping.question_id == question_id)
            .order_by(QuestionCLOMapping.clo_id)
        )
        return self.session.execute(stmt).scalars().all()

    def link_question_to_clos(self, question_id, clo_mappings):
        """Replace every CLO link of a question in a single transaction.

        clo_mappings: [{'clo_id': int, 'marks_allocated': number or None}, ...]
        """
        question = self.session.get(Question, question_id)
        if question is None:
            raise RecordNotFound(f"Question {question_id} not found")
        if not clo_mappings:
            raise ValueError("CLO mappings must be a non-empty list")

        rows = [{
            'question_id': question_id,
            'clo_id': int(mapping['clo_id']),
            'marks_allocated': parse_marks_allocated(mapping.get('marks_allocated'))
        } for mapping in clo_mappings]

        total_allocated = sum(to_decimal(row['marks_allocated']) for row in rows)
        if total_allocated > to_decimal(question.max_marks):
            raise ValueError(
                f"Total marks allocated ({total_allocated}) exceeds question marks ({question.max_marks})"
            )

        try:
            self.session.execute(delete(QuestionCLOMapping).where(QuestionCLOMapping.question_id == question_id))
            self.session.execute(insert(QuestionCLOMapping), rows)
            self.log_action("MAP_QUESTION_CLO", f"Replaced CLO links of question {question_id} with {len(rows)} mapping(s)")
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logging.error(f"Error mapping question {question_id} to CLOs, rolled back: {str(e)}")
            raise

        return self.get_question_clo_links(question_id)

    def bulk_insert_clo_plo_mappings(self, mappings):
        """Insert (clo_id, plo_id, mapping_strength) tuples with one parameterized statement"""
        rows = []
        for clo_id, plo_id, strength in mappings:
            strength = 2 if strength is None else int(strength)
            if strength not in VALID_MAPPING_STRENGTHS:
                raise ValueError(
                    f"Invalid mapping strength {strength}. Must be one of: {', '.join(str(s) for s in VALID_MAPPING_STRENGTHS)}"
                )
            rows.append({'clo_id': int(clo_id), 'plo_id': int(plo_id), 'mapping_strength': strength})

        if not rows:
            return 0

        try:
            self.session.execute(insert(CLOPLOMapping), rows)
            self.log_action("BULK_MAP_CLO_PLO", f"Inserted {len(rows)} CLO-PLO mapping(s)")
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logging.error(f"Error inserting CLO-PLO mappings: {str(e)}")
            raise
        return len(rows)

    # ---- bookkeeping ---------------------------------------------------

    def log_action(self, action, description):
        self.session.add(Log(action=action, description=description))

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
