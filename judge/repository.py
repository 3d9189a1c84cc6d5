import abc
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .constant import SubmissionStatus
from .exception import (
    DuplicatedSubmissionIdError,
    InvalidTransitionError,
    JudgeError,
    PersistenceError,
    ProblemNotFoundError,
    SubmissionIdNotFoundError,
)
from .meta import LeaderboardEntry, Problem, Submission, TestCase
from .models import (
    LeaderboardRecord,
    ProblemRecord,
    SolvedProblemRecord,
    SubmissionRecord,
)
from .utils import logger

# fields a status update may set together with the status
UPDATABLE_FIELDS = frozenset({
    'runtime',
    'memory',
    'passed_count',
    'total_count',
    'failed_case',
    'diagnostic',
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def check_transition(submission_id: str, current: SubmissionStatus,
                     target: SubmissionStatus):
    if not current.can_transition_to(target):
        raise InvalidTransitionError(
            f'{submission_id}: {current.value} -> {target.value} is not allowed'
        )


class ProblemRepository(abc.ABC):

    @abc.abstractmethod
    def get_problem(self, problem_id: str) -> Problem:
        '''Raise `ProblemNotFoundError` if the problem does not exist.'''


class SubmissionRepository(abc.ABC):

    @abc.abstractmethod
    def add_submission(self, submission: Submission) -> Submission:
        ...

    @abc.abstractmethod
    def get_submission(self, submission_id: str) -> Submission:
        '''Raise `SubmissionIdNotFoundError` if the id is unknown.'''

    @abc.abstractmethod
    def update_status(
        self,
        submission_id: str,
        status: SubmissionStatus,
        **fields,
    ) -> Submission:
        '''
        Move a submission forward and set `fields` in the same write.

        Raise `InvalidTransitionError` for any transition the state machine
        does not allow.
        '''

    @abc.abstractmethod
    def list_submissions(
        self,
        user_id: str,
        problem_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> List[Submission]:
        '''Newest first.'''

    @abc.abstractmethod
    def count_submissions(self,
                          user_id: str,
                          problem_id: Optional[str] = None) -> int:
        ...

    @abc.abstractmethod
    def submission_ids_by_status(self,
                                 status: SubmissionStatus) -> List[str]:
        '''Oldest first.'''

    @abc.abstractmethod
    def list_stale(
        self,
        statuses: Iterable[SubmissionStatus],
        created_before: datetime,
    ) -> List[Submission]:
        ...

    @abc.abstractmethod
    def count_statuses(self, user_id: str) -> Dict[SubmissionStatus, int]:
        ...


class LeaderboardRepository(abc.ABC):

    @abc.abstractmethod
    def apply_terminal(
        self,
        user_id: str,
        problem_id: str,
        accepted: bool,
        at: datetime,
    ) -> LeaderboardEntry:
        '''
        Record a terminal submission of `user_id`.

        An accepted submission on a problem the user has not solved yet
        increments `total_solved`. `last_submission_at` only moves forward.
        '''

    @abc.abstractmethod
    def get_entry(self, user_id: str) -> Optional[LeaderboardEntry]:
        ...

    @abc.abstractmethod
    def list_entries(
            self,
            since: Optional[datetime] = None) -> List[LeaderboardEntry]:
        ...


class InMemoryRepository(ProblemRepository, SubmissionRepository,
                         LeaderboardRepository):
    '''Process-local store, for tests and single-process deployments.'''

    def __init__(self, problems: Optional[Iterable[Problem]] = None):
        self.lock = threading.Lock()
        self.problems: Dict[str, Problem] = {}
        self.submissions: Dict[str, Submission] = {}
        self.entries: Dict[str, LeaderboardEntry] = {}
        self.solved: Dict[tuple, datetime] = {}
        for problem in problems or []:
            self.put_problem(problem)

    def put_problem(self, problem: Problem):
        with self.lock:
            self.problems[problem.id] = problem.model_copy(deep=True)

    def get_problem(self, problem_id: str) -> Problem:
        with self.lock:
            if problem_id not in self.problems:
                raise ProblemNotFoundError(
                    f'problem {problem_id} not found')
            return self.problems[problem_id].model_copy(deep=True)

    def add_submission(self, submission: Submission) -> Submission:
        with self.lock:
            if submission.id in self.submissions:
                raise DuplicatedSubmissionIdError(
                    f'duplicated submission id {submission.id}.')
            self.submissions[submission.id] = submission.model_copy(
                deep=True)
            return submission.model_copy(deep=True)

    def get_submission(self, submission_id: str) -> Submission:
        with self.lock:
            return self._get(submission_id).model_copy(deep=True)

    def _get(self, submission_id: str) -> Submission:
        if submission_id not in self.submissions:
            raise SubmissionIdNotFoundError(
                f'{submission_id} not found!')
        return self.submissions[submission_id]

    def update_status(self, submission_id, status, **fields) -> Submission:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f'can not update fields: {sorted(unknown)}')
        with self.lock:
            current = self._get(submission_id)
            check_transition(submission_id, current.status, status)
            updated = current.model_copy(update={
                'status': status,
                'updated_at': utcnow(),
                **fields,
            })
            self.submissions[submission_id] = updated
            return updated.model_copy(deep=True)

    def _select(self, user_id, problem_id=None) -> List[Submission]:
        return [
            s for s in self.submissions.values() if s.user_id == user_id and (
                problem_id is None or s.problem_id == problem_id)
        ]

    def list_submissions(self,
                         user_id,
                         problem_id=None,
                         offset=0,
                         limit=10) -> List[Submission]:
        with self.lock:
            selected = sorted(
                self._select(user_id, problem_id),
                key=lambda s: (s.created_at, s.id),
                reverse=True,
            )
            return [
                s.model_copy(deep=True)
                for s in selected[offset:offset + limit]
            ]

    def count_submissions(self, user_id, problem_id=None) -> int:
        with self.lock:
            return len(self._select(user_id, problem_id))

    def submission_ids_by_status(self, status) -> List[str]:
        with self.lock:
            selected = [
                s for s in self.submissions.values() if s.status == status
            ]
            return [
                s.id for s in sorted(selected, key=lambda s: s.created_at)
            ]

    def list_stale(self, statuses, created_before) -> List[Submission]:
        statuses = set(statuses)
        with self.lock:
            return [
                s.model_copy(deep=True) for s in self.submissions.values()
                if s.status in statuses and s.created_at < created_before
            ]

    def count_statuses(self, user_id) -> Dict[SubmissionStatus, int]:
        counts = {status: 0 for status in SubmissionStatus}
        with self.lock:
            for s in self._select(user_id):
                counts[s.status] += 1
        return counts

    def apply_terminal(self, user_id, problem_id, accepted,
                       at) -> LeaderboardEntry:
        with self.lock:
            entry = self.entries.get(user_id) or LeaderboardEntry(
                user_id=user_id)
            if accepted and (user_id, problem_id) not in self.solved:
                self.solved[(user_id, problem_id)] = at
                entry.total_solved += 1
            if (entry.last_submission_at is None
                    or at > entry.last_submission_at):
                entry.last_submission_at = at
            self.entries[user_id] = entry
            return entry.model_copy()

    def get_entry(self, user_id) -> Optional[LeaderboardEntry]:
        with self.lock:
            entry = self.entries.get(user_id)
            return entry.model_copy() if entry else None

    def list_entries(self, since=None) -> List[LeaderboardEntry]:
        with self.lock:
            return [
                e.model_copy() for e in self.entries.values()
                if since is None or (e.last_submission_at is not None
                                     and e.last_submission_at >= since)
            ]


def _to_problem(record: ProblemRecord) -> Problem:
    return Problem(
        id=record.id,
        title=record.title or '',
        difficulty=record.difficulty,
        test_cases=[TestCase(**tc) for tc in record.test_cases or []],
    )


def _to_submission(record: SubmissionRecord) -> Submission:
    return Submission(
        id=record.id,
        user_id=record.user_id,
        problem_id=record.problem_id,
        code=record.code,
        language=record.language,
        status=SubmissionStatus(record.status),
        runtime=record.runtime,
        memory=record.memory,
        passed_count=record.passed_count,
        total_count=record.total_count,
        failed_case=record.failed_case,
        diagnostic=record.diagnostic,
        test_cases=[TestCase(**tc) for tc in record.test_cases or []],
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
    )


def _to_entry(record: LeaderboardRecord) -> LeaderboardEntry:
    return LeaderboardEntry(
        user_id=record.user_id,
        total_solved=record.total_solved or 0,
        last_submission_at=as_utc(record.last_submission_at),
    )


class SqlRepository(ProblemRepository, SubmissionRepository,
                    LeaderboardRepository):
    '''SQLAlchemy backed store, one session per operation.'''

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def _session(self):
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except JudgeError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            logger().error(f'database operation failed: {exc}')
            raise PersistenceError(str(exc)) from exc
        finally:
            session.close()

    def put_problem(self, problem: Problem):
        with self._session() as session:
            session.merge(
                ProblemRecord(
                    id=problem.id,
                    title=problem.title,
                    difficulty=problem.difficulty,
                    test_cases=[tc.model_dump() for tc in problem.test_cases],
                    created_at=utcnow(),
                ))

    def get_problem(self, problem_id: str) -> Problem:
        with self._session() as session:
            record = session.get(ProblemRecord, problem_id)
            if record is None:
                raise ProblemNotFoundError(
                    f'problem {problem_id} not found')
            return _to_problem(record)

    def add_submission(self, submission: Submission) -> Submission:
        try:
            with self._session() as session:
                session.add(
                    SubmissionRecord(
                        id=submission.id,
                        user_id=submission.user_id,
                        problem_id=submission.problem_id,
                        code=submission.code,
                        language=submission.language.value,
                        status=submission.status.value,
                        test_cases=[
                            tc.model_dump() for tc in submission.test_cases
                        ],
                        created_at=submission.created_at,
                        updated_at=submission.updated_at,
                    ))
        except PersistenceError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise DuplicatedSubmissionIdError(
                    f'duplicated submission id {submission.id}.') from exc
            raise
        logger().info(f'submission stored [id={submission.id}]')
        return submission

    def get_submission(self, submission_id: str) -> Submission:
        with self._session() as session:
            record = session.get(SubmissionRecord, submission_id)
            if record is None:
                raise SubmissionIdNotFoundError(
                    f'{submission_id} not found!')
            return _to_submission(record)

    def update_status(self, submission_id, status, **fields) -> Submission:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f'can not update fields: {sorted(unknown)}')
        with self._session() as session:
            record = session.query(SubmissionRecord).filter(
                SubmissionRecord.id == submission_id).with_for_update(
                ).first()
            if record is None:
                raise SubmissionIdNotFoundError(
                    f'{submission_id} not found!')
            check_transition(submission_id,
                             SubmissionStatus(record.status), status)
            record.status = status.value
            record.updated_at = utcnow()
            for key, value in fields.items():
                setattr(record, key, value)
            session.flush()
            return _to_submission(record)

    def _query(self, session, user_id, problem_id=None):
        query = session.query(SubmissionRecord).filter(
            SubmissionRecord.user_id == user_id)
        if problem_id is not None:
            query = query.filter(SubmissionRecord.problem_id == problem_id)
        return query

    def list_submissions(self,
                         user_id,
                         problem_id=None,
                         offset=0,
                         limit=10) -> List[Submission]:
        with self._session() as session:
            records = self._query(session, user_id, problem_id).order_by(
                SubmissionRecord.created_at.desc(),
                SubmissionRecord.id.desc(),
            ).offset(offset).limit(limit).all()
            return [_to_submission(r) for r in records]

    def count_submissions(self, user_id, problem_id=None) -> int:
        with self._session() as session:
            return self._query(session, user_id, problem_id).count()

    def submission_ids_by_status(self, status) -> List[str]:
        with self._session() as session:
            rows = session.query(SubmissionRecord.id).filter(
                SubmissionRecord.status == status.value).order_by(
                    SubmissionRecord.created_at).all()
            return [row[0] for row in rows]

    def list_stale(self, statuses, created_before) -> List[Submission]:
        with self._session() as session:
            records = session.query(SubmissionRecord).filter(
                SubmissionRecord.status.in_([s.value for s in statuses]),
                SubmissionRecord.created_at < created_before,
            ).all()
            return [_to_submission(r) for r in records]

    def count_statuses(self, user_id) -> Dict[SubmissionStatus, int]:
        counts = {status: 0 for status in SubmissionStatus}
        with self._session() as session:
            rows = session.query(
                SubmissionRecord.status,
                func.count(SubmissionRecord.id),
            ).filter(SubmissionRecord.user_id == user_id).group_by(
                SubmissionRecord.status).all()
        for status, count in rows:
            counts[SubmissionStatus(status)] = count
        return counts

    def apply_terminal(self, user_id, problem_id, accepted,
                       at) -> LeaderboardEntry:
        with self._session() as session:
            record = session.query(LeaderboardRecord).filter(
                LeaderboardRecord.user_id == user_id).with_for_update(
                ).first()
            if record is None:
                record = LeaderboardRecord(user_id=user_id, total_solved=0)
                session.add(record)
            if accepted and session.get(SolvedProblemRecord,
                                        (user_id, problem_id)) is None:
                session.add(
                    SolvedProblemRecord(
                        user_id=user_id,
                        problem_id=problem_id,
                        solved_at=at,
                    ))
                record.total_solved = (record.total_solved or 0) + 1
            last = as_utc(record.last_submission_at)
            if last is None or at > last:
                record.last_submission_at = at
            session.flush()
            return _to_entry(record)

    def get_entry(self, user_id) -> Optional[LeaderboardEntry]:
        with self._session() as session:
            record = session.get(LeaderboardRecord, user_id)
            return _to_entry(record) if record else None

    def list_entries(self, since=None) -> List[LeaderboardEntry]:
        with self._session() as session:
            query = session.query(LeaderboardRecord)
            if since is not None:
                query = query.filter(
                    LeaderboardRecord.last_submission_at >= since)
            return [_to_entry(r) for r in query.all()]
