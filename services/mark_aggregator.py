"""
Question-level mark aggregation shared by the attainment and grade engines.

Everything here works on preloaded data so that callers can read an offering's
marks in one query and aggregate in memory:

    questions: {question_id: max_marks}
    marks:     {(student_id, question_id): obtained_marks}
"""

from collections import namedtuple
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal('0')
HUNDRED = Decimal('100')
PERCENT_PLACES = Decimal('0.0001')

MarkTotals = namedtuple('MarkTotals', ['obtained', 'possible'])


def to_decimal(value, default=ZERO):
    """Convert a DB/JSON value to Decimal; None and unparseable values give the default"""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return default


def quantize_percentage(value):
    """Round a percentage to 4 decimal places (half up), the stored precision"""
    return to_decimal(value).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def clamp_percentage(value):
    """Keep a percentage inside [0, 100]"""
    if value < ZERO:
        return ZERO
    if value > HUNDRED:
        return HUNDRED
    return value


def aggregate_student_marks(student_id, questions, marks):
    """Sum obtained and possible marks of one student over a question set.

    A missing mark (or a NULL obtained value) adds 0 to obtained, but the
    question's max marks are always added to possible.
    """
    obtained = ZERO
    possible = ZERO
    for question_id, max_marks in questions.items():
        possible += to_decimal(max_marks)
        # Explicit None check so that a real score of 0 is not skipped
        score_value = marks.get((student_id, question_id))
        if score_value is not None:
            obtained += to_decimal(score_value)
    return MarkTotals(obtained, possible)


def marks_percentage(totals):
    """Percentage of obtained over possible, or None when nothing was possible"""
    if totals.possible <= ZERO:
        return None
    return clamp_percentage((totals.obtained / totals.possible) * HUNDRED)
