import queue

import pytest

from judge import config
from judge.constant import SubmissionStatus
from judge.events import WebhookNotifier
from judge.problem_source import BackendProblemSource
from judge.repository import InMemoryRepository, SqlRepository
from judge.service import build_service
from tests.conftest import SUM_CODE


@pytest.fixture(autouse=True)
def plain_config(monkeypatch):
    monkeypatch.setattr(config, 'PROBLEM_SOURCE', 'database')
    monkeypatch.setattr(config, 'REDIS_URL', '')
    monkeypatch.setattr(config, 'NOTIFY_WEBHOOK_URL', '')


def test_in_memory_service(tmp_path):
    service = build_service(tmp_path / 'judge.json', database_url='')
    assert isinstance(service.pipeline.submissions, InMemoryRepository)
    assert service.pipeline.problems is service.pipeline.submissions
    assert not service.dispatcher.is_alive()


def test_sql_service(tmp_path):
    service = build_service(
        tmp_path / 'judge.json',
        database_url=f'sqlite:///{tmp_path / "judge.db"}',
    )
    assert isinstance(service.pipeline.submissions, SqlRepository)
    assert service.leaderboard.leaderboard is service.pipeline.submissions


def test_backend_problem_source_and_webhook(tmp_path, monkeypatch):
    monkeypatch.setattr(config, 'PROBLEM_SOURCE', 'backend')
    monkeypatch.setattr(config, 'NOTIFY_WEBHOOK_URL', 'http://web:8080/hook')
    service = build_service(tmp_path / 'judge.json', database_url='')
    assert isinstance(service.pipeline.problems, BackendProblemSource)
    assert any(
        isinstance(s, WebhookNotifier) for s in service.events._subscribers)


def test_unknown_problem_source(tmp_path, monkeypatch):
    monkeypatch.setattr(config, 'PROBLEM_SOURCE', 'ftp')
    with pytest.raises(ValueError):
        build_service(tmp_path / 'judge.json', database_url='')


def test_submit_refuses_when_queue_is_full(tmp_path, sum_problem):
    path = tmp_path / 'judge.json'
    path.write_text('{"QUEUE_SIZE": 1}')
    service = build_service(path, database_url='')
    service.pipeline.submissions.put_problem(sum_problem)
    service.submit('alice', 'sum', 'python', SUM_CODE)
    with pytest.raises(queue.Full):
        service.submit('alice', 'sum', 'python', SUM_CODE)
    # nothing is left behind for the rejected request
    assert service.pipeline.list_submissions('alice')['pagination'][
        'total'] == 1


def test_submission_losing_the_last_slot_stays_pending(tmp_path, sum_problem,
                                                       monkeypatch):
    path = tmp_path / 'judge.json'
    path.write_text('{"QUEUE_SIZE": 1}')
    service = build_service(path, database_url='')
    service.pipeline.submissions.put_problem(sum_problem)
    dispatcher = service.dispatcher
    create_submission = service.pipeline.create_submission

    def create_then_lose_race(**kwargs):
        submission = create_submission(**kwargs)
        # another request takes the last slot meanwhile
        dispatcher.queue.put_nowait('other')
        return submission

    monkeypatch.setattr(service.pipeline, 'create_submission',
                        create_then_lose_race)
    submission = service.submit('alice', 'sum', 'python', SUM_CODE)
    assert service.pipeline.get_submission(
        submission.id).status == SubmissionStatus.PENDING
    assert list(dispatcher.queue.queue) == ['other']

    # once there is room the sweep picks it up
    dispatcher.queue.get_nowait()
    dispatcher.sweep()
    assert list(dispatcher.queue.queue) == [submission.id]
