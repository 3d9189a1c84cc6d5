import requests as rq
from pydantic import ValidationError

from .config import (
    BACKEND_API,
    JUDGE_TOKEN,
)
from .exception import (
    InvalidInputError,
    PersistenceError,
    ProblemNotFoundError,
)
from .meta import Problem
from .repository import ProblemRepository
from .utils import logger


def handle_problem_response(resp: rq.Response, problem_id: str):
    if resp.status_code == 404:
        raise ProblemNotFoundError(f'problem {problem_id} not found')
    if resp.status_code == 401:
        raise PermissionError()
    if not resp.ok:
        logger().error(f'Error during get problem data [resp: {resp.text}]')
        raise PersistenceError(
            f'problem backend returned {resp.status_code}')


class BackendProblemSource(ProblemRepository):
    '''Read-only problem lookup against the web backend.'''

    def __init__(self, backend_api: str = BACKEND_API,
                 token: str = JUDGE_TOKEN, timeout: float = 10.0):
        self.backend_api = backend_api.rstrip('/')
        self.token = token
        self.timeout = timeout

    def get_problem(self, problem_id: str) -> Problem:
        logger().debug(f'fetch problem test cases [problem_id: {problem_id}]')
        try:
            resp = rq.get(
                f'{self.backend_api}/problem/{problem_id}/testcases',
                params={
                    'token': self.token,
                },
                timeout=self.timeout,
            )
        except rq.RequestException as exc:
            raise PersistenceError(
                f'problem backend unreachable: {exc}') from exc
        handle_problem_response(resp, problem_id)
        try:
            data = resp.json().get('data', {})
        except (ValueError, AttributeError) as exc:
            raise PersistenceError(
                'problem backend returned malformed JSON') from exc
        try:
            return Problem.model_validate({'id': problem_id, **data})
        except ValidationError as exc:
            # zero test cases lands here as well
            raise InvalidInputError(
                f'problem {problem_id} is not judgeable: {exc}') from exc
