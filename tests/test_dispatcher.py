import queue
import threading
import time
from unittest.mock import MagicMock

import pytest

from judge.constant import SubmissionStatus
from judge.dispatcher import Dispatcher
from judge.exception import DuplicatedSubmissionIdError
from tests.conftest import SUM_CODE


@pytest.fixture
def dispatcher_config(tmp_path):
    path = tmp_path / 'judge.json'
    path.write_text('{"QUEUE_SIZE": 2, "MAX_WORKER_COUNT": 1, '
                    '"SWEEP_INTERVAL": 3600}')
    return path


@pytest.fixture
def dummy_pipeline():
    pipeline = MagicMock()
    pipeline.pending_submission_ids.return_value = []
    pipeline.fail_stuck_submissions.return_value = []
    return pipeline


def test_config_is_read(dummy_pipeline, dispatcher_config):
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    assert d.MAX_TASK_COUNT == 2
    assert d.MAX_WORKER_COUNT == 1
    assert d.SWEEP_INTERVAL == 3600


def test_env_overrides_config_file(monkeypatch, dummy_pipeline,
                                   dispatcher_config):
    monkeypatch.setenv('MAX_WORKER_COUNT', '8')
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    assert d.MAX_WORKER_COUNT == 8


def test_queue_full(dummy_pipeline, dispatcher_config):
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    d.handle('a')
    d.handle('b')
    with pytest.raises(queue.Full):
        d.handle('c')


def test_duplicated_submission_id(dummy_pipeline, dispatcher_config):
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    d.handle('a')
    with pytest.raises(DuplicatedSubmissionIdError):
        d.handle('a')


def test_recover_queues_pending(dummy_pipeline, dispatcher_config):
    dummy_pipeline.pending_submission_ids.return_value = ['a', 'b', 'c']
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    d.handle('b')
    d.recover()
    assert list(d.queue.queue) == ['b', 'a']


def test_work_releases_worker_on_crash(dummy_pipeline, dispatcher_config):
    dummy_pipeline.process.side_effect = RuntimeError('boom')
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    d.inc_worker('a')
    d.work('a')
    assert d.worker_count == 0
    assert not d.contains('a')


def test_sweep_survives_errors(dummy_pipeline, dispatcher_config):
    dummy_pipeline.fail_stuck_submissions.side_effect = RuntimeError('db')
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    d.sweep()
    assert d.last_sweep > 0


def test_sweep_requeues_pending(dummy_pipeline, dispatcher_config):
    dummy_pipeline.pending_submission_ids.return_value = ['a', 'b', 'c']
    dummy_pipeline.fail_stuck_submissions.return_value = ['old']
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    d.inc_worker('a')
    d.sweep()
    # 'a' is already running, the queue holds two
    assert list(d.queue.queue) == ['b', 'c']
    d.sweep()
    assert list(d.queue.queue) == ['b', 'c']


def test_worker_limit(dummy_pipeline, dispatcher_config):
    running = []
    release = threading.Event()
    max_seen = []

    def process(submission_id):
        running.append(submission_id)
        max_seen.append(d.worker_count)
        release.wait(timeout=5)

    dummy_pipeline.process.side_effect = process
    d = Dispatcher(dummy_pipeline, dispatcher_config)
    d.handle('a')
    d.handle('b')
    d.start()
    try:
        deadline = time.monotonic() + 5
        while not running and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.3)
        # only one worker slot
        assert running == ['a']
        release.set()
        while len(running) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert running == ['a', 'b']
        assert max(max_seen) == 1
    finally:
        release.set()
        d.stop()
        d.join(timeout=5)
    assert not d.is_alive()


def test_end_to_end(make_pipeline, dispatcher_config):
    pipeline = make_pipeline()
    d = Dispatcher(pipeline, dispatcher_config)
    submission = pipeline.create_submission('alice', 'sum', 'python',
                                            SUM_CODE)
    d.start()
    try:
        d.handle(submission.id)
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if pipeline.get_submission(submission.id).status.is_terminal:
                break
            time.sleep(0.01)
    finally:
        d.stop()
        d.join(timeout=5)
    assert pipeline.get_submission(
        submission.id).status == SubmissionStatus.ACCEPTED
