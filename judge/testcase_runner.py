import time
from typing import Callable, List, Optional

from . import config
from .constant import CaseStatus, Language, OutcomeKind
from .exception import EvaluationAbortedError, PipelineTimeoutError
from .execution import EngineOutcome, ExecutionClient
from .meta import TestCase
from .result_factory import (
    TestCaseResult,
    make_case_result,
    make_compile_failure_results,
    make_engine_failure_result,
)
from .utils import logger


def strip(s: str) -> list:
    # strip trailing space for each line
    ss = [s.rstrip() for s in s.splitlines()]
    # strip redundant new line
    while len(ss) and ss[-1] == '':
        del ss[-1]
    return ss


def outputs_match(actual: str, expected: str) -> bool:
    return strip(actual or '') == strip(expected or '')


def classify(outcome: EngineOutcome, expected_output: str) -> CaseStatus:
    if outcome.kind == OutcomeKind.COMPLETED:
        if outputs_match(outcome.stdout, expected_output):
            return CaseStatus.PASSED
        return CaseStatus.WRONG_ANSWER
    if outcome.kind == OutcomeKind.TIMED_OUT:
        return CaseStatus.TIME_LIMIT_EXCEEDED
    if outcome.kind == OutcomeKind.RUNTIME_ERROR:
        return CaseStatus.RUNTIME_ERROR
    if outcome.kind == OutcomeKind.COMPILE_ERROR:
        return CaseStatus.COMPILATION_ERROR
    if outcome.kind == OutcomeKind.ENGINE_UNAVAILABLE:
        return CaseStatus.RUNTIME_ERROR
    raise AssertionError(f'unhandled outcome kind {outcome.kind}')


class TestCaseRunner:
    __test__ = False  # not a pytest class

    def __init__(
        self,
        client: ExecutionClient,
        retry_count: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        settings = config.get_judge_settings()
        self.client = client
        self.retry_count = (settings['ENGINE_RETRY_COUNT']
                            if retry_count is None else retry_count)
        self.backoff_base = (settings['ENGINE_BACKOFF_BASE']
                             if backoff_base is None else backoff_base)
        self.backoff_max = (settings['ENGINE_BACKOFF_MAX']
                            if backoff_max is None else backoff_max)
        self.sleep = sleep
        self.clock = clock

    def backoff(self, attempt: int) -> float:
        return min(self.backoff_base * (2**attempt), self.backoff_max)

    def run(
        self,
        test_cases: List[TestCase],
        language: Language,
        source_code: str,
        deadline: Optional[float] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[TestCaseResult]:
        """
        Run every case in stored order.

        Args:
            deadline: `clock()` value after which no further run is started
            should_stop: polled before each engine call, a true result aborts
                the remaining cases

        Raises:
            PipelineTimeoutError: the deadline passed before a case could run
            EvaluationAbortedError: `should_stop` asked to stop
        """
        results = []
        for index, test_case in enumerate(test_cases):
            outcome = self._execute_with_retry(
                index=index,
                test_case=test_case,
                language=language,
                source_code=source_code,
                deadline=deadline,
                should_stop=should_stop,
            )
            if outcome.kind == OutcomeKind.ENGINE_UNAVAILABLE:
                results.append(
                    make_engine_failure_result(index, test_case,
                                               outcome.reason))
                continue
            status = classify(outcome, test_case.expected_output)
            results.append(
                make_case_result(index, test_case, status, outcome))
            if status == CaseStatus.COMPILATION_ERROR:
                # the source does not compile, no other case can run
                logger().info(
                    f'compilation failed on case {index}, skip {len(test_cases) - index - 1} remaining cases'
                )
                results.extend(
                    make_compile_failure_results(index + 1, test_cases))
                break
        return results

    def _remaining(self, index: int, deadline: Optional[float]):
        if deadline is None:
            return None
        remaining = deadline - self.clock()
        if remaining <= 0:
            raise PipelineTimeoutError(f'deadline passed before case {index}')
        return remaining

    def _execute_with_retry(
        self,
        index: int,
        test_case: TestCase,
        language: Language,
        source_code: str,
        deadline: Optional[float] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> EngineOutcome:
        attempt = 0
        while True:
            if should_stop is not None and should_stop():
                raise EvaluationAbortedError(
                    f'evaluation stopped before case {index}')
            outcome = self.client.execute(
                language=language,
                source_code=source_code,
                stdin=test_case.input,
                expected_output=test_case.expected_output,
                timeout=self._remaining(index, deadline),
            )
            if outcome.kind != OutcomeKind.ENGINE_UNAVAILABLE:
                return outcome
            if outcome.protocol_error:
                logger().error(
                    f'engine protocol error [case={index}, attempt={attempt}]: {outcome.reason}'
                )
            else:
                logger().warning(
                    f'engine unavailable [case={index}, attempt={attempt}]: {outcome.reason}'
                )
            if attempt >= self.retry_count:
                logger().warning(
                    f'engine retries exhausted [case={index}, retries={self.retry_count}]'
                )
                return outcome
            self.sleep(self.backoff(attempt))
            attempt += 1
