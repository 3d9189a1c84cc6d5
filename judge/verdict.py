from dataclasses import dataclass
from typing import List, Optional, Sequence

from . import config
from .constant import (
    VERDICT_PRECEDENCE,
    CaseStatus,
    DiagnosticPolicy,
    SubmissionStatus,
)
from .meta import TestCase
from .result_factory import TestCaseResult


@dataclass
class Verdict:
    status: SubmissionStatus
    runtime: Optional[int] = None  # ms
    memory: Optional[int] = None  # KB
    passed_count: int = 0
    total_count: int = 0
    failed_case: Optional[int] = None
    diagnostic: Optional[str] = None


def _max_or_none(values) -> Optional[int]:
    values = [v for v in values if v is not None]
    return max(values) if values else None


class VerdictResolver:

    def __init__(
        self,
        policy: Optional[DiagnosticPolicy] = None,
        max_length: Optional[int] = None,
    ):
        self.policy = DiagnosticPolicy(policy or config.DIAGNOSTIC_POLICY)
        self.max_length = (config.DIAGNOSTIC_MAX_LENGTH
                           if max_length is None else max_length)

    def resolve(
        self,
        results: Sequence[TestCaseResult],
        test_cases: Optional[List[TestCase]] = None,
    ) -> Verdict:
        """
        Reduce per-case results into one verdict.

        Args:
            results: Case results in stored order
            test_cases: The cases the results were produced from, used for
                input/expected output in `full` diagnostics

        Returns:
            The verdict, with runtime/memory taken as the worst completed case
        """
        if not results:
            raise ValueError('can not resolve a verdict without results')
        completed = [r for r in results if r.completed]
        verdict = Verdict(
            status=SubmissionStatus.ACCEPTED,
            runtime=_max_or_none(r.time for r in completed),
            memory=_max_or_none(r.memory for r in completed),
            passed_count=sum(1 for r in results if r.passed),
            total_count=len(results),
        )
        for case_status, submission_status in VERDICT_PRECEDENCE:
            matched = [r for r in results if r.status == case_status]
            if not matched:
                continue
            representative = min(matched, key=lambda r: r.index)
            verdict.status = submission_status
            verdict.failed_case = representative.index
            verdict.diagnostic = self.diagnostic(representative, test_cases)
            return verdict
        if verdict.passed_count != verdict.total_count:
            raise AssertionError('unclassified case result')
        return verdict

    def diagnostic(
        self,
        result: TestCaseResult,
        test_cases: Optional[List[TestCase]] = None,
    ) -> Optional[str]:
        # hidden cases are never exposed
        if result.is_hidden or self.policy == DiagnosticPolicy.NONE:
            return None
        parts = []
        if result.status == CaseStatus.COMPILATION_ERROR:
            if result.compile_output:
                parts.append(result.compile_output)
        elif result.stderr:
            parts.append(result.stderr)
        if result.message:
            parts.append(result.message)
        if (self.policy == DiagnosticPolicy.FULL and test_cases
                and result.index < len(test_cases)
                and result.status == CaseStatus.WRONG_ANSWER):
            case = test_cases[result.index]
            parts.append(f'input:\n{case.input}')
            parts.append(f'expected:\n{case.expected_output}')
            parts.append(f'actual:\n{result.stdout}')
        if not parts:
            return None
        text = '\n'.join(parts)
        if len(text) > self.max_length:
            text = text[:self.max_length] + '...'
        return text
