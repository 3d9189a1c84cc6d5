from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from judge.constant import Language, SubmissionStatus
from judge.db import create_session_factory
from judge.exception import (
    DuplicatedSubmissionIdError,
    InvalidTransitionError,
    PersistenceError,
    ProblemNotFoundError,
    SubmissionIdNotFoundError,
)
from judge.meta import Submission
from judge.repository import SqlRepository, utcnow


@pytest.fixture
def sql_repo(tmp_path, sum_problem):
    factory = create_session_factory(f'sqlite:///{tmp_path / "judge.db"}')
    repo = SqlRepository(factory)
    repo.put_problem(sum_problem)
    return repo


def new_submission(submission_id, user_id='alice', problem_id='sum',
                   created_at=None, test_cases=()):
    return Submission(
        id=submission_id,
        user_id=user_id,
        problem_id=problem_id,
        code='print(1)',
        language=Language.PYTHON,
        test_cases=list(test_cases),
        created_at=created_at or utcnow(),
    )


def test_problem_round_trip(sql_repo, sum_problem):
    problem = sql_repo.get_problem('sum')
    assert problem == sum_problem
    assert problem.test_cases[2].is_hidden
    with pytest.raises(ProblemNotFoundError):
        sql_repo.get_problem('nope')


def test_submission_lifecycle(sql_repo, sum_problem):
    sql_repo.add_submission(
        new_submission('s1', test_cases=sum_problem.test_cases))
    with pytest.raises(DuplicatedSubmissionIdError):
        sql_repo.add_submission(new_submission('s1'))

    stored = sql_repo.get_submission('s1')
    assert stored.status == SubmissionStatus.PENDING
    assert stored.test_cases == sum_problem.test_cases
    assert stored.created_at.tzinfo is not None

    sql_repo.update_status('s1', SubmissionStatus.PROCESSING)
    done = sql_repo.update_status(
        's1',
        SubmissionStatus.ACCEPTED,
        runtime=13,
        memory=1003,
        passed_count=3,
        total_count=3,
    )
    assert done.status == SubmissionStatus.ACCEPTED
    assert (done.runtime, done.memory) == (13, 1003)
    assert done.updated_at is not None
    assert sql_repo.get_submission('s1') == done

    with pytest.raises(InvalidTransitionError):
        sql_repo.update_status('s1', SubmissionStatus.WRONG_ANSWER)
    with pytest.raises(SubmissionIdNotFoundError):
        sql_repo.get_submission('missing')
    with pytest.raises(ValueError):
        sql_repo.update_status('s1', SubmissionStatus.ACCEPTED, code='x')


def test_queries(sql_repo):
    now = utcnow()
    for i in range(4):
        sql_repo.add_submission(
            new_submission(f's{i}', created_at=now - timedelta(minutes=10 - i)))
    sql_repo.add_submission(new_submission('other', user_id='bob'))
    sql_repo.add_submission(
        new_submission('p2', problem_id='p2', created_at=now))
    sql_repo.update_status('s0', SubmissionStatus.PROCESSING)

    # newest first
    assert [s.id for s in sql_repo.list_submissions('alice', limit=2)
            ] == ['p2', 's3']
    assert [
        s.id for s in sql_repo.list_submissions('alice', offset=2, limit=2)
    ] == ['s2', 's1']
    assert sql_repo.count_submissions('alice') == 5
    assert sql_repo.count_submissions('alice', problem_id='p2') == 1
    # oldest first
    assert sql_repo.submission_ids_by_status(
        SubmissionStatus.PENDING)[:3] == ['s1', 's2', 's3']

    stale = sql_repo.list_stale(
        [SubmissionStatus.PENDING, SubmissionStatus.PROCESSING],
        created_before=now - timedelta(minutes=8),
    )
    assert sorted(s.id for s in stale) == ['s0', 's1']

    counts = sql_repo.count_statuses('alice')
    assert counts[SubmissionStatus.PENDING] == 4
    assert counts[SubmissionStatus.PROCESSING] == 1
    assert counts[SubmissionStatus.ACCEPTED] == 0


def test_apply_terminal(sql_repo):
    now = utcnow()
    sql_repo.apply_terminal('alice', 'sum', True, now - timedelta(hours=1))
    sql_repo.apply_terminal('alice', 'sum', True, now)
    entry = sql_repo.apply_terminal('alice', 'p2', False,
                                    now - timedelta(days=2))
    assert entry.total_solved == 1
    assert entry.last_submission_at == now

    sql_repo.apply_terminal('bob', 'sum', False, now - timedelta(days=10))
    assert {e.user_id
            for e in sql_repo.list_entries()} == {'alice', 'bob'}
    assert [
        e.user_id
        for e in sql_repo.list_entries(since=now - timedelta(days=7))
    ] == ['alice']
    assert sql_repo.get_entry('carol') is None


def test_database_errors_are_wrapped(sql_repo, monkeypatch):

    class BrokenSession:

        def get(self, *args, **kwargs):
            raise OperationalError('SELECT', {}, Exception('disk I/O error'))

        def rollback(self):
            pass

        def close(self):
            pass

    monkeypatch.setattr(sql_repo, 'session_factory', BrokenSession)
    with pytest.raises(PersistenceError):
        sql_repo.get_submission('s1')
