from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, func
from sqlalchemy.orm import DeclarativeBase
import uuid


class Base(DeclarativeBase):
    pass


# analysis_status values
ANALYSIS_PENDING = "pending"
ANALYSIS_PROCESSING = "processing"
ANALYSIS_COMPLETED = "completed"
ANALYSIS_FAILED = "failed"


def _new_session_id() -> str:
    return str(uuid.uuid4())


class Interview(Base):
    """Interview template a session is run from."""

    __tablename__ = "interviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    interview_type = Column(String, default="screening")  # screening, technical, behavioral, final
    difficulty_level = Column(String, default="mid")  # entry, mid, senior, executive
    duration_minutes = Column(Integer, default=15)
    custom_instructions = Column(Text, nullable=True)
    job_description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())


class Candidate(Base):
    __tablename__ = "candidates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    skills = Column(JSON, nullable=True)  # list of strings
    experience_summary = Column(Text, nullable=True)
    work_history = Column(JSON, nullable=True)  # [{company, title, start_date, end_date, description}]
    education = Column(JSON, nullable=True)  # [{institution, degree, field, end_date}]
    certificates = Column(JSON, nullable=True)  # [{name, issuer}]
    work_authorization = Column(String, nullable=True)
    salary_expectation = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    linkedin_url = Column(String, nullable=True)
    resume_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())


class InterviewSession(Base):
    __tablename__ = "interview_sessions"

    id = Column(String, primary_key=True, default=_new_session_id)
    interview_id = Column(Integer, nullable=True)
    candidate_id = Column(Integer, nullable=True)
    status = Column(String, default="active")  # active, completed
    job_description = Column(Text, nullable=True)
    resume = Column(Text, nullable=True)
    session_metadata = Column("metadata", JSON, nullable=True)
    transcript = Column(Text, nullable=True)
    analysis_status = Column(String, default=ANALYSIS_PENDING, nullable=False)
    analysis_result = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class InterviewLog(Base):
    __tablename__ = "interview_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    interview_session_id = Column(String, nullable=False, index=True)
    speaker = Column(String, nullable=False)  # agent, candidate, system
    message = Column(Text, nullable=False)
    log_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=func.now())


class KnowledgeBase(Base):
    __tablename__ = "knowledge_bases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=func.now())


class InterviewMemory(Base):
    """Facts a candidate already shared in a session, one row per topic."""

    __tablename__ = "interview_memory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    interview_session_id = Column(String, nullable=False, index=True)
    topic = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    source_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
