from datetime import datetime
from typing import List, Optional

from pydantic import (
    BaseModel,
    Field,
    conlist,
    field_validator,
)

from .constant import Language, SubmissionStatus


class TestCase(BaseModel):
    __test__ = False  # not a pytest class

    input: str = ''
    expected_output: str
    is_hidden: bool = False


class Problem(BaseModel):
    id: str
    title: str = ''
    difficulty: Optional[str] = None
    test_cases: conlist(TestCase, min_length=1)

    @field_validator('difficulty')
    @classmethod
    def _check_difficulty(cls, v):
        if v is not None and v not in {'easy', 'medium', 'hard'}:
            raise ValueError(f'unknown difficulty: {v}')
        return v


class SubmissionRequest(BaseModel):
    user_id: str
    problem_id: str
    language: Language
    code: str

    @field_validator('user_id', 'problem_id', mode='before')
    @classmethod
    def _check_id(cls, v):
        # numeric ids from JSON bodies
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str) or not v.strip():
            raise ValueError('id can not be empty')
        return v.strip()

    @field_validator('code')
    @classmethod
    def _check_code(cls, v):
        if not v.strip():
            raise ValueError('code can not be empty')
        return v


class Submission(BaseModel):
    id: str
    user_id: str
    problem_id: str
    code: str
    language: Language
    status: SubmissionStatus = SubmissionStatus.PENDING
    runtime: Optional[int] = None  # ms
    memory: Optional[int] = None  # KB
    passed_count: Optional[int] = None
    total_count: Optional[int] = None
    failed_case: Optional[int] = None
    diagnostic: Optional[str] = None
    test_cases: List[TestCase] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    def public_view(self) -> dict:
        '''Fields safe to return to the submitter.'''
        view = self.model_dump(
            mode='json',
            exclude={'code', 'test_cases'},
        )
        # which hidden case failed is not disclosed
        if (self.failed_case is not None
                and self.failed_case < len(self.test_cases)
                and self.test_cases[self.failed_case].is_hidden):
            view['failed_case'] = None
        return view


class LeaderboardEntry(BaseModel):
    user_id: str
    total_solved: int = 0
    last_submission_at: Optional[datetime] = None
    rank: Optional[int] = None
