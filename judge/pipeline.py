import math
import time
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError

from . import config
from .constant import SubmissionStatus
from .events import EventBus, TerminalEvent
from .exception import (
    InvalidInputError,
    EvaluationAbortedError,
    InvalidTransitionError,
    PersistenceError,
    PipelineTimeoutError,
)
from .meta import Submission, SubmissionRequest
from .repository import ProblemRepository, SubmissionRepository, utcnow
from .testcase_runner import TestCaseRunner
from .utils import logger
from .verdict import Verdict, VerdictResolver

SYSTEM_ERROR_MESSAGE = 'System error: submission could not be evaluated'


class SubmissionPipeline:
    """
    Drives one submission from `pending` to a terminal status.

    pending -> processing -> accepted | wrong_answer | time_limit_exceeded
                             | runtime_error | compilation_error

    A submission whose evaluation keeps failing, or that outlives the pipeline
    timeout, is forced into runtime_error instead of staying in processing.
    """

    def __init__(
        self,
        submissions: SubmissionRepository,
        problems: ProblemRepository,
        runner: TestCaseRunner,
        resolver: Optional[VerdictResolver] = None,
        events: Optional[EventBus] = None,
        attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        clock=time.monotonic,
    ):
        settings = config.get_judge_settings()
        self.submissions = submissions
        self.problems = problems
        self.runner = runner
        self.resolver = resolver or VerdictResolver()
        self.events = events or EventBus()
        self.attempts = max(
            1, settings['PIPELINE_ATTEMPTS'] if attempts is None else attempts)
        self.timeout = (settings['PIPELINE_TIMEOUT']
                        if timeout is None else timeout)
        self.clock = clock

    def create_submission(
        self,
        user_id: str,
        problem_id: str,
        language: str,
        code: str,
    ) -> Submission:
        try:
            request = SubmissionRequest(
                user_id=user_id,
                problem_id=problem_id,
                language=language,
                code=code,
            )
        except ValidationError as exc:
            raise InvalidInputError(str(exc)) from exc
        problem = self.problems.get_problem(request.problem_id)
        if not problem.test_cases:
            raise InvalidInputError(
                f'problem {problem.id} has no test cases')
        submission = Submission(
            id=str(uuid.uuid4()),
            user_id=request.user_id,
            problem_id=request.problem_id,
            code=request.code,
            language=request.language,
            status=SubmissionStatus.PENDING,
            test_cases=[tc.model_copy() for tc in problem.test_cases],
            created_at=utcnow(),
        )
        submission = self.submissions.add_submission(submission)
        logger().info(
            f'receive submission {submission.id} for problem: {submission.problem_id}.'
        )
        return submission

    def get_submission(self, submission_id: str) -> Submission:
        return self.submissions.get_submission(submission_id)

    def list_submissions(
        self,
        user_id: str,
        problem_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        page = max(1, page)
        limit = max(1, limit)
        total = self.submissions.count_submissions(user_id, problem_id)
        items = self.submissions.list_submissions(
            user_id,
            problem_id=problem_id,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {
            'submissions': items,
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit),
            },
        }

    def pending_submission_ids(self) -> List[str]:
        return self.submissions.submission_ids_by_status(
            SubmissionStatus.PENDING)

    def process(self, submission_id: str) -> Submission:
        submission = self.submissions.get_submission(submission_id)
        if submission.status != SubmissionStatus.PENDING:
            logger().info(
                f'skip submission in {submission.status.value} [id={submission_id}]'
            )
            return submission
        try:
            submission = self.submissions.update_status(
                submission_id, SubmissionStatus.PROCESSING)
        except InvalidTransitionError:
            # another worker or the sweeper got there first
            logger().info(f'submission already taken [id={submission_id}]')
            return self.submissions.get_submission(submission_id)
        logger().info(f'submission processing [id={submission_id}]')

        deadline = self._deadline(submission)
        for attempt in range(1, self.attempts + 1):
            try:
                verdict = self._evaluate(submission, deadline)
                return self._finish(submission_id, verdict)
            except (InvalidTransitionError, EvaluationAbortedError):
                logger().info(
                    f'submission reached a terminal state elsewhere [id={submission_id}]'
                )
                return self.submissions.get_submission(submission_id)
            except PipelineTimeoutError as exc:
                logger().warning(
                    f'submission timed out [id={submission_id}]: {exc}')
                break
            except Exception as exc:
                logger().error(
                    f'submission attempt {attempt}/{self.attempts} failed [id={submission_id}]: {exc}',
                    exc_info=True,
                )
        return self._force_failure(submission_id)

    def _deadline(self, submission: Submission) -> float:
        # same basis as fail_stuck_submissions
        elapsed = (utcnow() - submission.created_at).total_seconds()
        return self.clock() + max(0.0, self.timeout - elapsed)

    def _is_terminal(self, submission_id: str) -> bool:
        return self.submissions.get_submission(submission_id).status.is_terminal

    def _evaluate(self, submission: Submission, deadline: float) -> Verdict:
        results = self.runner.run(
            submission.test_cases,
            submission.language,
            submission.code,
            deadline=deadline,
            should_stop=lambda: self._is_terminal(submission.id),
        )
        logger().debug(
            f'case results [id={submission.id}]: {[r.status.value for r in results]}'
        )
        return self.resolver.resolve(results, submission.test_cases)

    def _finish(self, submission_id: str, verdict: Verdict) -> Submission:
        submission = self.submissions.update_status(
            submission_id,
            verdict.status,
            runtime=verdict.runtime,
            memory=verdict.memory,
            passed_count=verdict.passed_count,
            total_count=verdict.total_count,
            failed_case=verdict.failed_case,
            diagnostic=verdict.diagnostic,
        )
        logger().info(
            f'submission finished [id={submission_id}, status={verdict.status.value}, passed={verdict.passed_count}/{verdict.total_count}]'
        )
        self.events.publish(TerminalEvent.from_submission(submission))
        return submission

    def _force_failure(self, submission_id: str) -> Submission:
        logger().warning(
            f'force submission into runtime_error [id={submission_id}]')
        try:
            submission = self.submissions.update_status(
                submission_id,
                SubmissionStatus.RUNTIME_ERROR,
                diagnostic=SYSTEM_ERROR_MESSAGE,
            )
        except InvalidTransitionError:
            return self.submissions.get_submission(submission_id)
        except PersistenceError:
            logger().error(
                f'can not persist forced failure [id={submission_id}]')
            raise
        self.events.publish(TerminalEvent.from_submission(submission))
        return submission

    def fail_stuck_submissions(self,
                               now: Optional[datetime] = None) -> List[str]:
        """
        Force runtime_error on submissions still pending or processing after
        the pipeline timeout.

        Returns:
            Ids of the submissions that were forced
        """
        now = now or utcnow()
        stale = self.submissions.list_stale(
            [SubmissionStatus.PENDING, SubmissionStatus.PROCESSING],
            created_before=now - timedelta(seconds=self.timeout),
        )
        forced = []
        for submission in stale:
            try:
                submission = self.submissions.update_status(
                    submission.id,
                    SubmissionStatus.RUNTIME_ERROR,
                    diagnostic=SYSTEM_ERROR_MESSAGE,
                )
            except InvalidTransitionError:
                continue
            logger().warning(f'stuck submission forced [id={submission.id}]')
            self.events.publish(TerminalEvent.from_submission(submission))
            forced.append(submission.id)
        return forced
