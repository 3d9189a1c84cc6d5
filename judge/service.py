import queue
from dataclasses import dataclass
from typing import Optional

import requests

from . import config
from .db import create_session_factory
from .dispatcher import Dispatcher
from .events import EventBus, WebhookNotifier
from .execution import ExecutionClient
from .leaderboard import LeaderboardProjector, RedisUserLocks, UserLocks
from .pipeline import SubmissionPipeline
from .problem_source import BackendProblemSource
from .repository import InMemoryRepository, SqlRepository
from .testcase_runner import TestCaseRunner
from .utils import get_redis_client, logger
from .verdict import VerdictResolver


@dataclass
class JudgeService:
    pipeline: SubmissionPipeline
    leaderboard: LeaderboardProjector
    dispatcher: Dispatcher
    events: EventBus

    def submit(self, user_id, problem_id, language, code):
        '''Persist a new submission and queue it for evaluation.'''
        if self.dispatcher.queue.full():
            raise queue.Full
        submission = self.pipeline.create_submission(
            user_id=user_id,
            problem_id=problem_id,
            language=language,
            code=code,
        )
        try:
            self.dispatcher.handle(submission.id)
        except queue.Full:
            # lost the race for the last slot, the next sweep queues it
            logger().warning(
                f'queue full, submission left pending [id={submission.id}]')
        return submission


def build_repository(database_url: str = ''):
    if not database_url:
        logger().warning('DATABASE_URL is not set, use in-memory storage')
        return InMemoryRepository()
    return SqlRepository(create_session_factory(database_url))


def build_service(
    judge_config=None,
    database_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> JudgeService:
    """
    Wire the judge components together from the module config.

    Args:
        judge_config: path to the JSON config of the worker pool and retry knobs
        database_url: overrides `DATABASE_URL`, empty string means in-memory
        session: requests session used to reach the execution engine

    Returns:
        A JudgeService whose dispatcher is not started yet
    """
    repo = build_repository(config.DATABASE_URL
                            if database_url is None else database_url)
    problems = repo
    if config.PROBLEM_SOURCE == 'backend':
        problems = BackendProblemSource()
    elif config.PROBLEM_SOURCE != 'database':
        raise ValueError(f'unknown problem source {config.PROBLEM_SOURCE}')
    settings = config.get_judge_settings(judge_config)
    client = ExecutionClient(
        session=session,
        timeout=settings['ENGINE_TIMEOUT'],
        request_timeout=settings['ENGINE_REQUEST_TIMEOUT'],
        poll_interval=settings['ENGINE_POLL_INTERVAL'],
    )
    runner = TestCaseRunner(
        client,
        retry_count=settings['ENGINE_RETRY_COUNT'],
        backoff_base=settings['ENGINE_BACKOFF_BASE'],
        backoff_max=settings['ENGINE_BACKOFF_MAX'],
    )
    events = EventBus()
    pipeline = SubmissionPipeline(
        submissions=repo,
        problems=problems,
        runner=runner,
        resolver=VerdictResolver(),
        events=events,
        attempts=settings['PIPELINE_ATTEMPTS'],
        timeout=settings['PIPELINE_TIMEOUT'],
    )
    locks = RedisUserLocks(get_redis_client()) if config.REDIS_URL else UserLocks()
    leaderboard = LeaderboardProjector(repo, submissions=repo, locks=locks)
    events.subscribe(leaderboard.on_submission_terminal)
    if config.NOTIFY_WEBHOOK_URL:
        events.subscribe(
            WebhookNotifier(config.NOTIFY_WEBHOOK_URL, token=config.JUDGE_TOKEN))
    return JudgeService(
        pipeline=pipeline,
        leaderboard=leaderboard,
        dispatcher=Dispatcher(pipeline, judge_config),
        events=events,
    )
