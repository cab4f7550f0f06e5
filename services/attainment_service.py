"""
CLO and PLO attainment calculations.

Direct attainment is the share of evaluated students who reach the threshold
on a CLO's questions. Indirect attainment comes from survey averages on a
5-point scale. The two are blended with fixed weights and PLOs are rolled up
from the stored CLO values, weighted by mapping strength.
"""

import logging
from collections import namedtuple
from decimal import Decimal

from services.mark_aggregator import (
    HUNDRED, ZERO, aggregate_student_marks, clamp_percentage, marks_percentage,
    quantize_percentage, to_decimal
)

DIRECT_WEIGHT = Decimal('0.8')
INDIRECT_WEIGHT = Decimal('0.2')
INDIRECT_SCALE = Decimal('5')
DEFAULT_THRESHOLD = Decimal('50')
DEFAULT_MAPPING_STRENGTH = 2

STATUS_ACHIEVED = 'Achieved'
STATUS_NOT_ACHIEVED = 'Not Achieved'
STATUS_NOT_ASSESSED = 'Not Assessed'

DirectAttainment = namedtuple('DirectAttainment', ['percentage', 'attained_students', 'evaluated_students'])
PLORollup = namedtuple('PLORollup', ['attainment', 'contributing_clos', 'skipped_clos'])


class AttainmentService:
    """Computes, persists and reads CLO/PLO attainment through an OutcomeRepository"""

    def __init__(self, repository):
        self.repository = repository

    # ---- pure calculations ---------------------------------------------

    def resolve_threshold(self):
        """Passing percentage of the most recently created active threshold, or 50"""
        threshold = self.repository.get_active_threshold()
        if threshold is None or threshold.passing_percentage is None:
            return DEFAULT_THRESHOLD
        return to_decimal(threshold.passing_percentage, DEFAULT_THRESHOLD)

    @staticmethod
    def student_clo_percentage(student_id, questions, marks):
        """(totals, percentage) of one student on a CLO's questions.

        The percentage is rounded to 4 places before any threshold comparison,
        or None when the student had nothing possible.
        """
        totals = aggregate_student_marks(student_id, questions, marks)
        percentage = marks_percentage(totals)
        if percentage is None:
            return totals, None
        return totals, quantize_percentage(percentage)

    @staticmethod
    def calculate_direct_attainment(questions, student_ids, marks, threshold):
        """Percentage of evaluated students whose CLO percentage meets the threshold.

        Students with nothing possible on the question set are left out of both
        the numerator and the denominator.
        """
        if not questions:
            return DirectAttainment(ZERO, 0, 0)

        evaluated = 0
        attained = 0
        for student_id in student_ids:
            _, percentage = AttainmentService.student_clo_percentage(student_id, questions, marks)
            if percentage is None:
                continue
            evaluated += 1
            if percentage >= threshold:
                attained += 1

        if evaluated == 0:
            return DirectAttainment(ZERO, 0, 0)

        percentage = quantize_percentage(Decimal(attained) / Decimal(evaluated) * HUNDRED)
        return DirectAttainment(percentage, attained, evaluated)

    @staticmethod
    def calculate_indirect_attainment(scores):
        if not scores:
            return ZERO
        average = sum(to_decimal(score) for score in scores) / Decimal(len(scores))
        return quantize_percentage(clamp_percentage(average / INDIRECT_SCALE * HUNDRED))

    @staticmethod
    def combine_attainment(direct, indirect):
        return quantize_percentage(to_decimal(direct) * DIRECT_WEIGHT + to_decimal(indirect) * INDIRECT_WEIGHT)

    @staticmethod
    def rollup_plo(mappings, latest_combined):
        """Strength-weighted mean of the mapped CLOs that have a stored combined value.

        mappings: [(clo_id, mapping_strength), ...]
        latest_combined: {clo_id: combined_attainment}
        """
        weighted_sum = ZERO
        total_weight = ZERO
        contributing = []
        skipped = []
        for clo_id, strength in mappings:
            combined = latest_combined.get(clo_id)
            if combined is None:
                skipped.append(clo_id)
                continue
            weight = Decimal(strength or DEFAULT_MAPPING_STRENGTH)
            weighted_sum += to_decimal(combined) * weight
            total_weight += weight
            contributing.append(clo_id)

        if total_weight <= ZERO:
            return PLORollup(ZERO, contributing, skipped)
        return PLORollup(quantize_percentage(weighted_sum / total_weight), contributing, skipped)

    # ---- CLO attainment ------------------------------------------------

    def calculate_clo_attainment(self, course_offering_id):
        repository = self.repository
        repository.get_course_offering(course_offering_id)

        clos = repository.get_clos_for_offering(course_offering_id)
        if not clos:
            return {'success': False, 'message': 'No CLOs found for this course offering'}

        threshold = self.resolve_threshold()
        student_ids = repository.get_enrolled_student_ids(course_offering_id)
        clo_questions = repository.get_clo_questions(course_offering_id)
        marks = repository.get_marks(course_offering_id)
        indirect_scores = repository.get_indirect_scores(course_offering_id)

        logging.info(f"Calculating CLO attainment for offering {course_offering_id}: "
                     f"{len(clos)} CLOs, {len(student_ids)} students, threshold {threshold}")

        results = []
        try:
            for clo in clos:
                questions = clo_questions.get(clo.id, {})
                if not questions:
                    logging.warning(f"CLO {clo.code} has no questions in offering {course_offering_id}")

                direct = self.calculate_direct_attainment(questions, student_ids, marks, threshold)
                indirect = self.calculate_indirect_attainment(indirect_scores.get(clo.id))
                combined = self.combine_attainment(direct.percentage, indirect)
                attained = combined >= threshold

                repository.upsert_clo_summary(
                    course_offering_id, clo.id, direct.percentage, indirect, combined, threshold, attained
                )
                results.append({
                    'clo_id': clo.id,
                    'clo_code': clo.code,
                    'description': clo.description,
                    'question_count': len(questions),
                    'students_evaluated': direct.evaluated_students,
                    'students_attained': direct.attained_students,
                    'direct_attainment': direct.percentage,
                    'indirect_attainment': indirect,
                    'combined_attainment': combined,
                    'threshold': threshold,
                    'attained': attained
                })

            repository.log_action(
                "CALCULATE_CLO_ATTAINMENT",
                f"Calculated attainment of {len(results)} CLOs for course offering {course_offering_id}"
            )
            repository.commit()
        except Exception as e:
            repository.rollback()
            logging.error(f"Error calculating CLO attainment for offering {course_offering_id}: {str(e)}")
            raise

        return {
            'success': True,
            'course_offering_id': course_offering_id,
            'threshold': threshold,
            'results': results
        }

    def calculate_student_clo_attainment(self, student_id, course_offering_id):
        repository = self.repository
        repository.get_course_offering(course_offering_id)
        student = repository.get_student(student_id)

        clos = repository.get_clos_for_offering(course_offering_id)
        if not clos:
            return {'success': False, 'message': 'No CLOs found for this course offering'}

        threshold = self.resolve_threshold()
        clo_questions = repository.get_clo_questions(course_offering_id)
        marks = repository.get_marks(course_offering_id, [student_id])

        clo_results = []
        for clo in clos:
            totals, percentage = self.student_clo_percentage(student_id, clo_questions.get(clo.id, {}), marks)
            if percentage is None:
                status = STATUS_NOT_ASSESSED
            else:
                status = STATUS_ACHIEVED if percentage >= threshold else STATUS_NOT_ACHIEVED
            clo_results.append({
                'clo_id': clo.id,
                'clo_code': clo.code,
                'obtained_marks': totals.obtained,
                'total_marks': totals.possible,
                'percentage': percentage,
                'status': status
            })

        return {
            'success': True,
            'student_id': student.id,
            'registration_no': student.registration_no,
            'full_name': student.full_name,
            'course_offering_id': course_offering_id,
            'threshold': threshold,
            'clos': clo_results
        }

    def get_clo_attainment_summary(self, course_offering_id):
        self.repository.get_course_offering(course_offering_id)
        rows = self.repository.get_clo_summaries(course_offering_id)
        if not rows:
            return {'success': False, 'message': 'No CLO attainment calculated yet for this course offering'}

        return {
            'success': True,
            'course_offering_id': course_offering_id,
            'results': [{
                'clo_id': clo.id,
                'clo_code': clo.code,
                'description': clo.description,
                'direct_attainment': to_decimal(summary.direct_attainment),
                'indirect_attainment': to_decimal(summary.indirect_attainment),
                'combined_attainment': to_decimal(summary.combined_attainment),
                'threshold': to_decimal(summary.threshold),
                'attained': bool(summary.attained),
                'updated_at': summary.updated_at
            } for summary, clo in rows]
        }

    def get_course_overall_summary(self, course_offering_id):
        """CLO count, attained count and mean attainment values of one offering"""
        self.repository.get_course_offering(course_offering_id)
        rows = self.repository.get_clo_summaries(course_offering_id)
        if not rows:
            return {'success': False, 'message': 'No CLO attainment calculated yet for this course offering'}

        summaries = [summary for summary, _ in rows]
        total = Decimal(len(summaries))
        attained_count = sum(1 for summary in summaries if summary.attained)

        def mean(column):
            return quantize_percentage(sum(to_decimal(getattr(s, column)) for s in summaries) / total)

        return {
            'success': True,
            'course_offering_id': course_offering_id,
            'total_clos': len(summaries),
            'attained_clos': attained_count,
            'attainment_rate': quantize_percentage(Decimal(attained_count) / total * HUNDRED),
            'average_direct_attainment': mean('direct_attainment'),
            'average_indirect_attainment': mean('indirect_attainment'),
            'average_combined_attainment': mean('combined_attainment')
        }

    # ---- PLO attainment ------------------------------------------------

    def calculate_plo_attainment(self, degree_id, academic_session_id):
        repository = self.repository
        repository.get_degree(degree_id)
        repository.get_academic_session(academic_session_id)

        plos = repository.get_plos_for_degree(degree_id)
        if not plos:
            return {'success': False, 'message': 'No PLOs found for this degree'}

        threshold = self.resolve_threshold()
        mappings = repository.get_clo_plo_mappings([plo.id for plo in plos])
        mapped_clo_ids = {clo_id for plo_mappings in mappings.values() for clo_id, _ in plo_mappings}
        latest_combined = repository.get_latest_clo_combined(mapped_clo_ids, academic_session_id)

        results = []
        unmapped = []
        try:
            for plo in plos:
                plo_mappings = mappings.get(plo.id, [])
                if not plo_mappings:
                    logging.warning(f"PLO {plo.code} has no CLO mappings, not calculated")
                    unmapped.append({'plo_id': plo.id, 'plo_code': plo.code})
                    continue

                rollup = self.rollup_plo(plo_mappings, latest_combined)
                if rollup.skipped_clos:
                    logging.warning(f"PLO {plo.code}: no attainment recorded in session {academic_session_id} "
                                    f"for CLO ids {rollup.skipped_clos}, skipped")
                attained = rollup.attainment >= threshold

                repository.upsert_plo_summary(
                    degree_id, academic_session_id, plo.id, rollup.attainment, threshold, attained
                )
                results.append({
                    'plo_id': plo.id,
                    'plo_code': plo.code,
                    'description': plo.description,
                    'attainment': rollup.attainment,
                    'threshold': threshold,
                    'attained': attained,
                    'contributing_clos': rollup.contributing_clos,
                    'skipped_clos': rollup.skipped_clos
                })

            repository.log_action(
                "CALCULATE_PLO_ATTAINMENT",
                f"Calculated attainment of {len(results)} PLOs for degree {degree_id}, session {academic_session_id}"
            )
            repository.commit()
        except Exception as e:
            repository.rollback()
            logging.error(f"Error calculating PLO attainment for degree {degree_id}: {str(e)}")
            raise

        return {
            'success': True,
            'degree_id': degree_id,
            'academic_session_id': academic_session_id,
            'threshold': threshold,
            'results': results,
            'unmapped_plos': unmapped
        }

    def get_plo_attainment_summary(self, degree_id, academic_session_id):
        rows = self.repository.get_plo_summaries(degree_id, academic_session_id)
        if not rows:
            return {'success': False, 'message': 'No PLO attainment calculated yet for this degree and session'}

        return {
            'success': True,
            'degree_id': degree_id,
            'academic_session_id': academic_session_id,
            'results': [{
                'plo_id': plo.id,
                'plo_code': plo.code,
                'description': plo.description,
                'attainment': to_decimal(summary.attainment),
                'threshold': to_decimal(summary.threshold),
                'attained': bool(summary.attained),
                'updated_at': summary.updated_at
            } for summary, plo in rows]
        }
