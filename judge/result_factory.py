"""
Factory functions for creating standardized test case results.

This module provides consistent result structures for:
- Case results classified from an engine outcome
- Synthetic results produced without an engine call (compile short-circuit)
- Results for cases whose engine calls kept failing
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from .constant import CaseStatus

if TYPE_CHECKING:
    from .execution import EngineOutcome
    from .meta import TestCase

ENGINE_FAILURE_MESSAGE = 'System error: execution engine unavailable'


@dataclass
class TestCaseResult:
    __test__ = False  # not a pytest class

    index: int
    status: CaseStatus
    stdout: str = ''
    stderr: str = ''
    compile_output: str = ''
    message: str = ''
    time: Optional[int] = None  # ms
    memory: Optional[int] = None  # KB
    completed: bool = False
    is_hidden: bool = False
    synthetic: bool = False

    @property
    def passed(self) -> bool:
        return self.status == CaseStatus.PASSED


def make_case_result(
    index: int,
    test_case: 'TestCase',
    status: CaseStatus,
    outcome: 'EngineOutcome',
) -> TestCaseResult:
    """
    Build a case result from an engine outcome.

    Args:
        index: Position of the case in the problem's stored order
        test_case: The case that was executed
        status: Classified status of the case
        outcome: Raw outcome returned by the execution client

    Returns:
        Case result
    """
    return TestCaseResult(
        index=index,
        status=status,
        stdout=outcome.stdout or '',
        stderr=outcome.stderr or '',
        compile_output=outcome.compile_output or '',
        message=outcome.message or '',
        time=outcome.time,
        memory=outcome.memory,
        completed=outcome.is_completed,
        is_hidden=test_case.is_hidden,
    )


def make_engine_failure_result(
    index: int,
    test_case: 'TestCase',
    reason: str = '',
) -> TestCaseResult:
    """
    Build the result of a case whose engine calls exhausted every retry.
    """
    message = ENGINE_FAILURE_MESSAGE
    if reason:
        message = f'{message} ({reason})'
    return TestCaseResult(
        index=index,
        status=CaseStatus.RUNTIME_ERROR,
        message=message,
        is_hidden=test_case.is_hidden,
    )


def make_compile_failure_results(
    start: int,
    test_cases: List['TestCase'],
) -> List[TestCaseResult]:
    """
    Build synthetic compilation_error results for every case from `start` on.

    Args:
        start: Index of the first case to mark
        test_cases: All cases of the problem

    Returns:
        One synthetic result per remaining case
    """
    return [
        TestCaseResult(
            index=i,
            status=CaseStatus.COMPILATION_ERROR,
            is_hidden=test_cases[i].is_hidden,
            synthetic=True,
        ) for i in range(start, len(test_cases))
    ]
