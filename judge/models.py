"""
Database models for the submission evaluation service.

Problems are written by the web backend and only read here. Submissions are
owned by the pipeline; leaderboard rows are a projection of terminal
submissions and never hold a rank.
"""
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ProblemRecord(Base):
    __tablename__ = "problems"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False, default="")
    difficulty = Column(String(10), nullable=True)
    # [{"input": ..., "expected_output": ..., "is_hidden": ...}, ...]
    test_cases = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=True)


class SubmissionRecord(Base):
    __tablename__ = "submissions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False)
    problem_id = Column(String(64), nullable=False)
    code = Column(Text, nullable=False)
    language = Column(String(10), nullable=False)
    status = Column(String(30), nullable=False, default="pending")
    # Status values: pending, processing, accepted, wrong_answer,
    # time_limit_exceeded, runtime_error, compilation_error
    runtime = Column(Integer, nullable=True)
    memory = Column(Integer, nullable=True)
    passed_count = Column(Integer, nullable=True)
    total_count = Column(Integer, nullable=True)
    failed_case = Column(Integer, nullable=True)
    diagnostic = Column(Text, nullable=True)

    # test cases as they were when the submission was accepted
    test_cases = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_submissions_user_id", "user_id"),
        Index("idx_submissions_problem_id", "problem_id"),
        Index("idx_submissions_status", "status"),
    )


class LeaderboardRecord(Base):
    __tablename__ = "leaderboard"

    user_id = Column(String(64), primary_key=True)
    total_solved = Column(Integer, nullable=False, default=0)
    last_submission_at = Column(DateTime(timezone=True), nullable=True)


class SolvedProblemRecord(Base):
    __tablename__ = "solved_problems"

    user_id = Column(String(64), primary_key=True)
    problem_id = Column(String(64), primary_key=True)
    solved_at = Column(DateTime(timezone=True), nullable=False)
