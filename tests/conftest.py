import pytest

from judge.events import EventBus
from judge.execution import EngineOutcome
from judge.leaderboard import LeaderboardProjector
from judge.meta import Problem, TestCase
from judge.pipeline import SubmissionPipeline
from judge.repository import InMemoryRepository
from judge.testcase_runner import TestCaseRunner
from judge.verdict import VerdictResolver

SUM_CODE = 'a, b = map(int, input().split())\nprint(a + b)\n'


class FakeClock:
    '''Monotonic clock that only moves when someone sleeps on it.'''

    def __init__(self, now=0.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class DummyEngine:
    """
    Stand-in for the execution client.

    `handler(stdin)` returns the outcome of one run; it may also be a list of
    outcomes consumed in call order.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def execute(self, language, source_code, stdin, expected_output=None,
                timeout=None):
        self.calls.append({
            'language': language,
            'source_code': source_code,
            'stdin': stdin,
            'expected_output': expected_output,
            'timeout': timeout,
        })
        if isinstance(self.handler, list):
            return self.handler.pop(0)
        return self.handler(stdin)


def add_numbers(stdin):
    a, b = map(int, stdin.split())
    return EngineOutcome.completed(f'{a + b}\n', time=10 + a, memory=1000 + b)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sum_problem():
    return Problem(
        id='sum',
        title='A + B',
        difficulty='easy',
        test_cases=[
            TestCase(input='1 2', expected_output='3'),
            TestCase(input='2 2', expected_output='4'),
            TestCase(input='3 3', expected_output='6', is_hidden=True),
        ],
    )


@pytest.fixture
def repo(sum_problem):
    return InMemoryRepository([sum_problem])


@pytest.fixture
def make_pipeline(repo, clock):

    def make_pipeline(handler=add_numbers, retry_count=0, attempts=2,
                      timeout=300, policy='messages'):
        engine = DummyEngine(handler)
        runner = TestCaseRunner(
            engine,
            retry_count=retry_count,
            backoff_base=1.0,
            backoff_max=8.0,
            sleep=clock.sleep,
            clock=clock,
        )
        events = EventBus()
        leaderboard = LeaderboardProjector(repo, submissions=repo)
        events.subscribe(leaderboard.on_submission_terminal)
        pipeline = SubmissionPipeline(
            submissions=repo,
            problems=repo,
            runner=runner,
            resolver=VerdictResolver(policy=policy, max_length=200),
            events=events,
            attempts=attempts,
            timeout=timeout,
            clock=clock,
        )
        pipeline.engine = engine
        pipeline.leaderboard = leaderboard
        return pipeline

    return make_pipeline
