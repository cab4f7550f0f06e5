# --- START OF FILE models.py ---

from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Index # Import Index explicitly

# Create a db instance to be initialized later
db = SQLAlchemy()

class Degree(db.Model):
    """Degree program that owns program learning outcomes"""
    __tablename__ = 'degree'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True, index=True) # Indexed
    name = db.Column(db.String(150), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    courses = db.relationship('Course', backref='degree', lazy=True)
    program_outcomes = db.relationship('ProgramLearningOutcome', backref='degree', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Degree {self.code}: {self.name}>"

class AcademicSession(db.Model):
    """AcademicSession model"""
    __tablename__ = 'academic_session'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def __repr__(self):
        return f"<AcademicSession {self.name}>"

class Semester(db.Model):
    """Semester model"""
    __tablename__ = 'semester'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def __repr__(self):
        return f"<Semester {self.name}>"

class Course(db.Model):
    """Course model representing a catalog course"""
    __tablename__ = 'course'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, index=True) # Indexed
    name = db.Column(db.String(100), nullable=False, index=True)
    credit_hours = db.Column(db.Numeric(4, 1), nullable=False, default=3)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='SET NULL'), nullable=True, index=True) # Indexed FK
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    offerings = db.relationship('CourseOffering', backref='course', lazy=True, cascade="all, delete-orphan")
    course_outcomes = db.relationship('CourseLearningOutcome', backref='course', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Course {self.code}: {self.name}>"

class CourseOffering(db.Model):
    """A course taught in one academic session and semester"""
    __tablename__ = 'course_offering'
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    academic_session_id = db.Column(db.Integer, db.ForeignKey('academic_session.id'), nullable=True, index=True) # Indexed FK
    semester_id = db.Column(db.Integer, db.ForeignKey('semester.id'), nullable=True, index=True) # Indexed FK
    section = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    academic_session = db.relationship('AcademicSession', lazy=True)
    semester = db.relationship('Semester', lazy=True)
    assessments = db.relationship('Assessment', backref='course_offering', lazy=True, cascade="all, delete-orphan")
    enrollments = db.relationship('Enrollment', backref='course_offering', lazy=True, cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_offering_session_created', 'academic_session_id', 'created_at'),
    )

    def __repr__(self):
        return f"<CourseOffering {self.id} of Course {self.course_id}>"

class Student(db.Model):
    """Student model"""
    __tablename__ = 'student'
    id = db.Column(db.Integer, primary_key=True)
    registration_no = db.Column(db.String(30), nullable=False, unique=True, index=True) # Indexed
    full_name = db.Column(db.String(120), nullable=False)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='SET NULL'), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def __repr__(self):
        return f"<Student {self.registration_no}: {self.full_name}>"

class Enrollment(db.Model):
    """Enrollment of a student in a course offering"""
    __tablename__ = 'enrollment'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'course_offering_id', name='_student_offering_uc'),
    )

    def __repr__(self):
        return f"<Enrollment Student {self.student_id} in Offering {self.course_offering_id}>"

class CourseLearningOutcome(db.Model):
    """Course learning outcome (CLO)"""
    __tablename__ = 'course_learning_outcome'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, index=True) # Indexed
    description = db.Column(db.Text, nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index('idx_clo_course_code', 'course_id', 'code'),
    )

    def __repr__(self):
        return f"<CourseLearningOutcome {self.code} for Course {self.course_id}>"

class ProgramLearningOutcome(db.Model):
    """Program learning outcome (PLO)"""
    __tablename__ = 'program_learning_outcome'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, index=True) # Indexed
    description = db.Column(db.Text, nullable=False)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('degree_id', 'code', name='_plo_degree_code_uc'),
    )

    def __repr__(self):
        return f"<ProgramLearningOutcome {self.code}>"

class CLOPLOMapping(db.Model):
    """Weighted CLO to PLO mapping (1=Low, 2=Medium, 3=High)"""
    __tablename__ = 'clo_plo_mapping'
    id = db.Column(db.Integer, primary_key=True)
    clo_id = db.Column(db.Integer, db.ForeignKey('course_learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    plo_id = db.Column(db.Integer, db.ForeignKey('program_learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    mapping_strength = db.Column(db.Integer, nullable=True, default=2)
    created_at = db.Column(db.DateTime, default=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('clo_id', 'plo_id', name='_clo_plo_uc'),
        Index('idx_clo_plo_plo_clo', 'plo_id', 'clo_id'),
    )

    def __repr__(self):
        return f"<CLOPLOMapping CLO {self.clo_id} -> PLO {self.plo_id} ({self.mapping_strength})>"

class Assessment(db.Model):
    """Assessment belonging to a course offering"""
    __tablename__ = 'assessment'
    id = db.Column(db.Integer, primary_key=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    title = db.Column(db.String(150), nullable=False)
    assessment_type = db.Column(db.String(30), nullable=False, default='Exam')
    total_marks = db.Column(db.Numeric(10, 2), nullable=False, default=100)
    weightage = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    assessment_date = db.Column(db.Date, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    questions = db.relationship('Question', backref='assessment', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Assessment {self.title} for Offering {self.course_offering_id}>"

class Question(db.Model):
    """Question model"""
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(db.Integer, db.ForeignKey('assessment.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    number = db.Column(db.Integer, nullable=False, default=1)
    text = db.Column(db.Text, nullable=True)
    max_marks = db.Column(db.Numeric(10, 2), nullable=False)
    clo_id = db.Column(db.Integer, db.ForeignKey('course_learning_outcome.id', ondelete='SET NULL'), nullable=True, index=True) # Indexed FK
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    clo_mappings = db.relationship('QuestionCLOMapping', backref='question', lazy=True, cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_question_assessment_number', 'assessment_id', 'number'),
    )

    def __repr__(self):
        return f"<Question {self.number} for Assessment {self.assessment_id}>"

class QuestionCLOMapping(db.Model):
    """Links a question to additional CLOs with the marks allocated to each"""
    __tablename__ = 'question_clo_mapping'
    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id', ondelete='CASCADE'), nullable=False, index=True)
    clo_id = db.Column(db.Integer, db.ForeignKey('course_learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    marks_allocated = db.Column(db.Numeric(10, 2), nullable=True)

    __table_args__ = (
        db.UniqueConstraint('question_id', 'clo_id', name='_question_clo_uc'),
    )

    def __repr__(self):
        return f"<QuestionCLOMapping Q {self.question_id} -> CLO {self.clo_id}>"

class Mark(db.Model):
    """Obtained marks of a student on one question"""
    __tablename__ = 'mark'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    question_id = db.Column(db.Integer, db.ForeignKey('question.id', ondelete='CASCADE'), nullable=False, index=True) # Indexed FK
    obtained_marks = db.Column(db.Numeric(10, 2), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'question_id', name='_mark_student_question_uc'),
        Index('idx_mark_question_student', 'question_id', 'student_id'),
    )

    def __repr__(self):
        return f"<Mark {self.obtained_marks} for Student {self.student_id} on Question {self.question_id}>"

class IndirectAttainmentResult(db.Model):
    """Survey-derived average score (5-point scale) for a CLO in an offering"""
    __tablename__ = 'indirect_attainment_result'
    id = db.Column(db.Integer, primary_key=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'), nullable=False, index=True)
    clo_id = db.Column(db.Integer, db.ForeignKey('course_learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    survey_title = db.Column(db.String(150), nullable=True)
    average_score = db.Column(db.Numeric(6, 3), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.now)

    __table_args__ = (
        Index('idx_indirect_offering_clo', 'course_offering_id', 'clo_id'),
    )

    def __repr__(self):
        return f"<IndirectAttainmentResult {self.average_score} for CLO {self.clo_id}>"

class AttainmentThreshold(db.Model):
    """Passing percentage; the most recently created active row is current"""
    __tablename__ = 'attainment_threshold'
    id = db.Column(db.Integer, primary_key=True)
    passing_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=50)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True) # Indexed
    description = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, index=True)

    def __repr__(self):
        return f"<AttainmentThreshold {self.passing_percentage}% active={self.is_active}>"

class CourseCLOAttainmentSummary(db.Model):
    """CourseCLOAttainmentSummary model, overwritten on every recomputation"""
    __tablename__ = 'course_clo_attainment_summary'
    id = db.Column(db.Integer, primary_key=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'), nullable=False, index=True)
    clo_id = db.Column(db.Integer, db.ForeignKey('course_learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    direct_attainment = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    indirect_attainment = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    combined_attainment = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    threshold = db.Column(db.Numeric(5, 2), nullable=False)
    attained = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    clo = db.relationship('CourseLearningOutcome', lazy=True)

    __table_args__ = (
        db.UniqueConstraint('course_offering_id', 'clo_id', name='_clo_summary_offering_clo_uc'),
    )

    def __repr__(self):
        return f"<CourseCLOAttainmentSummary CLO {self.clo_id} Offering {self.course_offering_id}: {self.combined_attainment}>"

class ProgramPLOAttainmentSummary(db.Model):
    """ProgramPLOAttainmentSummary model, overwritten on every recomputation"""
    __tablename__ = 'program_plo_attainment_summary'
    id = db.Column(db.Integer, primary_key=True)
    degree_id = db.Column(db.Integer, db.ForeignKey('degree.id', ondelete='CASCADE'), nullable=False, index=True)
    academic_session_id = db.Column(db.Integer, db.ForeignKey('academic_session.id', ondelete='CASCADE'), nullable=False, index=True)
    plo_id = db.Column(db.Integer, db.ForeignKey('program_learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    attainment = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    threshold = db.Column(db.Numeric(5, 2), nullable=False)
    attained = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    plo = db.relationship('ProgramLearningOutcome', lazy=True)

    __table_args__ = (
        db.UniqueConstraint('degree_id', 'academic_session_id', 'plo_id', name='_plo_summary_degree_session_plo_uc'),
    )

    def __repr__(self):
        return f"<ProgramPLOAttainmentSummary PLO {self.plo_id}: {self.attainment}>"

class GradeScale(db.Model):
    """GradeScale model"""
    __tablename__ = 'grade_scale'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    grade_points = db.relationship('GradePoint', backref='grade_scale', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<GradeScale {self.name}>"

class GradePoint(db.Model):
    """Percentage range mapped to a letter grade and grade-point value"""
    __tablename__ = 'grade_point'
    id = db.Column(db.Integer, primary_key=True)
    grade_scale_id = db.Column(db.Integer, db.ForeignKey('grade_scale.id', ondelete='CASCADE'), nullable=False, index=True)
    letter_grade = db.Column(db.String(5), nullable=False)
    grade_points = db.Column(db.Numeric(4, 2), nullable=False)
    min_percentage = db.Column(db.Numeric(5, 2), nullable=False, index=True) # Indexed
    max_percentage = db.Column(db.Numeric(5, 2), nullable=False, index=True) # Indexed
    remarks = db.Column(db.String(50), nullable=True)

    __table_args__ = (
        Index('idx_grade_point_scale_min_max', 'grade_scale_id', 'min_percentage', 'max_percentage'),
    )

    def __repr__(self):
        return f"<GradePoint {self.letter_grade} ({self.min_percentage}-{self.max_percentage}%)>"

class CourseResult(db.Model):
    """Final course result of a student in an offering"""
    __tablename__ = 'course_result'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    course_offering_id = db.Column(db.Integer, db.ForeignKey('course_offering.id', ondelete='CASCADE'), nullable=False, index=True)
    total_marks = db.Column(db.Numeric(10, 4), nullable=False, default=0,
                            comment='Final weighted percentage, same value as percentage')
    percentage = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    letter_grade = db.Column(db.String(5), nullable=False)
    grade_points = db.Column(db.Numeric(4, 2), nullable=False)
    remarks = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'course_offering_id', name='_course_result_student_offering_uc'),
    )

    def __repr__(self):
        return f"<CourseResult {self.letter_grade} for Student {self.student_id} in Offering {self.course_offering_id}>"

class SemesterResult(db.Model):
    """Semester GPA of a student"""
    __tablename__ = 'semester_result'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    semester_id = db.Column(db.Integer, db.ForeignKey('semester.id', ondelete='CASCADE'), nullable=False, index=True)
    total_credit_hours = db.Column(db.Numeric(6, 1), nullable=False, default=0)
    gpa = db.Column(db.Numeric(4, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    semester = db.relationship('Semester', lazy=True)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'semester_id', name='_semester_result_student_semester_uc'),
    )

    def __repr__(self):
        return f"<SemesterResult GPA {self.gpa} for Student {self.student_id} in Semester {self.semester_id}>"

class Log(db.Model):
    """Log model"""
    __tablename__ = 'log'
    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False, index=True) # Indexed
    description = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.now, index=True) # Indexed

    def __repr__(self):
        return f"<Log {self.action} at {self.timestamp}>"

# --- END OF FILE models.py ---
