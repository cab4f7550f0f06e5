"""
Course grade, semester GPA and CGPA calculations.
"""

import logging
import traceback
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import Decimal, ROUND_HALF_UP

from services.cancellation import CalculationCancelled, CancellationToken
from services.mark_aggregator import (
    HUNDRED, ZERO, aggregate_student_marks, marks_percentage, quantize_percentage, to_decimal
)

GRADE_PLACES = Decimal('0.01')
EXPECTED_TOTAL_WEIGHTAGE = HUNDRED

GradeBand = namedtuple('GradeBand', ['letter_grade', 'grade_points', 'min_percentage', 'max_percentage', 'remarks'])
AssessmentWeight = namedtuple('AssessmentWeight', ['id', 'title', 'weightage'])

DEFAULT_GRADE = GradeBand('F', Decimal('0.00'), ZERO, ZERO, 'Fail')


def round_grade_value(value):
    """Round a GPA or comparison percentage to 2 decimal places (half up)"""
    return to_decimal(value).quantize(GRADE_PLACES, rounding=ROUND_HALF_UP)


class GradeService:
    """Grades students of an offering and rolls them up into GPA/CGPA"""

    def __init__(self, repository, max_workers=1):
        self.repository = repository
        self.max_workers = max(1, int(max_workers or 1))

    # ---- pure calculations ---------------------------------------------

    @staticmethod
    def compute_final_percentage(student_id, assessments, assessment_questions, marks):
        """Weighted percentage of one student over the offering's assessments.

        Each assessment contributes percentage * weightage / 100. The sum is not
        rescaled when the weightages do not add up to 100, and is 0 when they add
        up to 0.
        """
        total_weightage = ZERO
        weighted_sum = ZERO
        obtained_total = ZERO
        breakdown = []

        for assessment in assessments:
            weightage = to_decimal(assessment.weightage)
            totals = aggregate_student_marks(student_id, assessment_questions.get(assessment.id, {}), marks)
            percentage = marks_percentage(totals)
            if percentage is None:
                percentage = ZERO
            weighted = percentage * weightage / HUNDRED

            total_weightage += weightage
            weighted_sum += weighted
            obtained_total += totals.obtained
            breakdown.append({
                'assessment_id': assessment.id,
                'title': assessment.title,
                'obtained_marks': totals.obtained,
                'total_marks': totals.possible,
                'percentage': quantize_percentage(percentage),
                'weightage': weightage,
                'weighted_score': quantize_percentage(weighted)
            })

        final_percentage = weighted_sum if total_weightage > ZERO else ZERO
        return {
            'final_percentage': quantize_percentage(final_percentage),
            'obtained_marks': quantize_percentage(obtained_total),
            'total_weightage': total_weightage,
            'assessments': breakdown
        }

    @staticmethod
    def match_grade(percentage, grade_bands):
        """Grade band whose inclusive [min, max] range holds the percentage.

        The percentage is rounded to 2 decimal places before comparison, so
        79.995 falls into 80.00-100.00 and 79.994 into 75.00-79.99.
        """
        rounded = round_grade_value(percentage)
        for band in sorted(grade_bands, key=lambda b: b.min_percentage, reverse=True):
            if band.min_percentage <= rounded <= band.max_percentage:
                return band
        return DEFAULT_GRADE

    def load_grade_bands(self):
        return [
            GradeBand(
                point.letter_grade,
                to_decimal(point.grade_points),
                to_decimal(point.min_percentage),
                to_decimal(point.max_percentage),
                point.remarks
            )
            for point in self.repository.get_grade_points()
        ]

    def get_letter_grade(self, percentage):
        band = self.match_grade(percentage, self.load_grade_bands())
        return {
            'letter_grade': band.letter_grade,
            'grade_points': band.grade_points,
            'remarks': band.remarks
        }

    def _load_offering_inputs(self, course_offering_id, student_ids=None):
        repository = self.repository
        assessments = [
            AssessmentWeight(a.id, a.title, to_decimal(a.weightage))
            for a in repository.get_assessments(course_offering_id)
        ]
        questions = repository.get_assessment_questions(course_offering_id)
        marks = repository.get_marks(course_offering_id, student_ids)
        return assessments, questions, marks

    def _grade_student(self, student_id, assessments, questions, marks, grade_bands):
        outcome = self.compute_final_percentage(student_id, assessments, questions, marks)
        band = self.match_grade(outcome['final_percentage'], grade_bands)
        outcome.update({
            'student_id': student_id,
            'letter_grade': band.letter_grade,
            'grade_points': band.grade_points,
            'remarks': band.remarks
        })
        return outcome

    @staticmethod
    def _warn_on_weightage(course_offering_id, total_weightage):
        if total_weightage != EXPECTED_TOTAL_WEIGHTAGE:
            logging.warning(f"Assessment weightages of offering {course_offering_id} sum to {total_weightage}, "
                            f"not {EXPECTED_TOTAL_WEIGHTAGE}; final percentages are not rescaled")

    def _persist_course_result(self, course_offering_id, outcome):
        # course_result.total_marks holds the final weighted percentage
        self.repository.upsert_course_result(
            outcome['student_id'], course_offering_id, outcome['final_percentage'], outcome['final_percentage'],
            outcome['letter_grade'], outcome['grade_points'], outcome['remarks']
        )

    # ---- course grades -------------------------------------------------

    def calculate_final_grade(self, student_id, course_offering_id):
        repository = self.repository
        repository.get_course_offering(course_offering_id)
        repository.get_student(student_id)

        assessments, questions, marks = self._load_offering_inputs(course_offering_id, [student_id])
        if not assessments:
            return {'success': False, 'message': 'No assessments found for this course offering'}

        outcome = self._grade_student(student_id, assessments, questions, marks, self.load_grade_bands())
        self._warn_on_weightage(course_offering_id, outcome['total_weightage'])

        try:
            self._persist_course_result(course_offering_id, outcome)
            repository.commit()
        except Exception as e:
            repository.rollback()
            logging.error(f"Error saving grade of student {student_id} in offering {course_offering_id}: {str(e)}")
            raise

        outcome['success'] = True
        outcome['course_offering_id'] = course_offering_id
        return outcome

    def _compute_batch(self, student_ids, assessments, questions, marks, grade_bands, cancel_token):
        """Grade every student in memory; {student_id: outcome or exception}.

        Students not reached before cancellation are absent from the result.
        """
        def compute(student_id):
            cancel_token.raise_if_cancelled()
            return self._grade_student(student_id, assessments, questions, marks, grade_bands)

        outcomes = {}
        if self.max_workers == 1:
            for student_id in student_ids:
                try:
                    outcomes[student_id] = compute(student_id)
                except CalculationCancelled:
                    break
                except Exception as e:
                    logging.error(f"Error grading student {student_id}: {str(e)}")
                    outcomes[student_id] = e
            return outcomes

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(compute, student_id): student_id for student_id in student_ids}
            for future in as_completed(futures):
                student_id = futures[future]
                try:
                    outcomes[student_id] = future.result()
                except CalculationCancelled:
                    continue
                except Exception as e:
                    logging.error(f"Error grading student {student_id}: {str(e)}")
                    outcomes[student_id] = e
        return outcomes

    def batch_calculate_grades(self, course_offering_id, cancel_token=None):
        """Grade every enrolled student of an offering.

        A failure on one student is recorded in that student's entry and the
        batch moves on. Each successful student is committed on its own.
        """
        repository = self.repository
        cancel_token = cancel_token or CancellationToken()
        repository.get_course_offering(course_offering_id)

        assessments, questions, marks = self._load_offering_inputs(course_offering_id)
        if not assessments:
            return {'success': False, 'message': 'No assessments found for this course offering'}

        # Plain tuples, since per-student commits expire the ORM objects
        students = [(s.id, s.registration_no, s.full_name) for s in repository.get_enrolled_students(course_offering_id)]
        if not students:
            return {'success': False, 'message': 'No students enrolled in this course offering'}

        self._warn_on_weightage(course_offering_id, sum((a.weightage for a in assessments), ZERO))
        grade_bands = self.load_grade_bands()

        logging.info(f"Batch grading offering {course_offering_id}: {len(students)} students, "
                     f"{self.max_workers} worker(s)")
        outcomes = self._compute_batch(
            [student_id for student_id, _, _ in students], assessments, questions, marks, grade_bands, cancel_token
        )

        results = []
        success_count = 0
        fail_count = 0
        cancelled = False
        for student_id, registration_no, full_name in students:
            if cancel_token.cancelled or student_id not in outcomes:
                cancelled = True
                break

            entry = {'student_id': student_id, 'registration_no': registration_no, 'full_name': full_name}
            outcome = outcomes[student_id]
            if isinstance(outcome, Exception):
                fail_count += 1
                entry.update({'success': False, 'error': str(outcome)})
                results.append(entry)
                continue

            try:
                self._persist_course_result(course_offering_id, outcome)
                repository.commit()
            except Exception as e:
                repository.rollback()
                logging.error(f"Error saving grade of student {student_id}: {str(e)}\n{traceback.format_exc()}")
                fail_count += 1
                entry.update({'success': False, 'error': str(e)})
                results.append(entry)
                continue

            success_count += 1
            entry.update({
                'success': True,
                'percentage': outcome['final_percentage'],
                'letter_grade': outcome['letter_grade'],
                'grade_points': outcome['grade_points']
            })
            results.append(entry)

        if cancelled:
            logging.warning(f"Batch grading of offering {course_offering_id} cancelled after {len(results)} "
                            f"student(s): {cancel_token.reason}")

        repository.log_action(
            "BATCH_CALCULATE_GRADES",
            f"Graded {success_count} of {len(students)} students in course offering {course_offering_id}"
            f"{' (cancelled)' if cancelled else ''}"
        )
        repository.commit()

        return {
            'success': True,
            'course_offering_id': course_offering_id,
            'total_students': len(students),
            'processed': len(results),
            'success_count': success_count,
            'fail_count': fail_count,
            'cancelled': cancelled,
            'results': results
        }

    def get_grade_distribution(self, course_offering_id):
        self.repository.get_course_offering(course_offering_id)
        course_results = self.repository.get_course_results(course_offering_id)
        if not course_results:
            return {'success': False, 'message': 'No grades calculated yet for this course offering'}

        total = Decimal(len(course_results))
        counts = {}
        points_by_letter = {}
        for result in course_results:
            counts[result.letter_grade] = counts.get(result.letter_grade, 0) + 1
            points_by_letter[result.letter_grade] = to_decimal(result.grade_points)

        distribution = [{
            'letter_grade': letter,
            'count': counts[letter],
            'percentage': round_grade_value(Decimal(counts[letter]) / total * HUNDRED)
        } for letter in sorted(counts, key=lambda letter: points_by_letter[letter], reverse=True)]

        percentages = [to_decimal(result.percentage) for result in course_results]
        grade_points = [to_decimal(result.grade_points) for result in course_results]
        return {
            'success': True,
            'course_offering_id': course_offering_id,
            'distribution': distribution,
            'statistics': {
                'total_students': len(course_results),
                'average_percentage': round_grade_value(sum(percentages, ZERO) / total),
                'max_percentage': round_grade_value(max(percentages)),
                'min_percentage': round_grade_value(min(percentages)),
                'average_gpa': round_grade_value(sum(grade_points, ZERO) / total)
            }
        }

    # ---- GPA / CGPA ----------------------------------------------------

    def calculate_semester_gpa(self, student_id, semester_id):
        repository = self.repository
        repository.get_student(student_id)
        repository.get_semester(semester_id)

        rows = repository.get_semester_course_results(student_id, semester_id)
        if not rows:
            return {'success': False, 'message': 'No enrollments found for this semester'}

        total_points = ZERO
        total_credits = ZERO
        courses = []
        excluded = []
        for row in rows:
            if row.grade_points is None:
                excluded.append(row.course_code)
                continue
            credits = to_decimal(row.credit_hours)
            points = to_decimal(row.grade_points)
            total_points += points * credits
            total_credits += credits
            courses.append({
                'course_offering_id': row.course_offering_id,
                'course_code': row.course_code,
                'course_name': row.course_name,
                'credit_hours': credits,
                'letter_grade': row.letter_grade,
                'grade_points': points
            })

        if excluded:
            logging.info(f"Semester GPA of student {student_id}: no result yet for {', '.join(excluded)}, excluded")

        gpa = round_grade_value(total_points / total_credits) if total_credits > ZERO else round_grade_value(ZERO)

        try:
            repository.upsert_semester_result(student_id, semester_id, total_credits, gpa)
            repository.commit()
        except Exception as e:
            repository.rollback()
            logging.error(f"Error saving semester GPA of student {student_id}: {str(e)}")
            raise

        return {
            'success': True,
            'student_id': student_id,
            'semester_id': semester_id,
            'gpa': gpa,
            'total_credit_hours': total_credits,
            'courses': courses,
            'excluded_courses': excluded
        }

    def calculate_cgpa(self, student_id):
        self.repository.get_student(student_id)
        rows = self.repository.get_semester_results(student_id)
        if not rows:
            return {'success': False, 'message': 'No semester results found'}

        total_points = ZERO
        total_credits = ZERO
        semesters = []
        for row in rows:
            credits = to_decimal(row.total_credit_hours)
            gpa = to_decimal(row.gpa)
            total_points += gpa * credits
            total_credits += credits
            semesters.append({
                'semester_id': row.semester_id,
                'semester_name': row.semester_name,
                'gpa': gpa,
                'credit_hours': credits
            })

        cgpa = round_grade_value(total_points / total_credits) if total_credits > ZERO else round_grade_value(ZERO)
        return {
            'success': True,
            'student_id': student_id,
            'cgpa': cgpa,
            'total_credit_hours': total_credits,
            'semesters': semesters
        }
