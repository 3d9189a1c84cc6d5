from unittest.mock import MagicMock

import pytest
import requests

from judge import problem_source
from judge.exception import (
    InvalidInputError,
    PersistenceError,
    ProblemNotFoundError,
)
from judge.problem_source import BackendProblemSource


class DummyResponse:

    def __init__(self, status_code, data=None):
        self.status_code = status_code
        self.data = data
        self.text = str(data)
        self.ok = status_code < 400

    def json(self):
        return self.data


@pytest.fixture
def fake_get(monkeypatch):
    get = MagicMock()
    monkeypatch.setattr(problem_source.rq, 'get', get)
    return get


def test_get_problem(fake_get):
    fake_get.return_value = DummyResponse(
        200, {
            'data': {
                'title': 'A + B',
                'test_cases': [
                    {
                        'input': '1 2',
                        'expected_output': '3',
                    },
                    {
                        'input': '3 3',
                        'expected_output': '6',
                        'is_hidden': True,
                    },
                ],
            },
        })
    source = BackendProblemSource('http://web:8080/', token='tok')
    problem = source.get_problem('sum')
    assert problem.id == 'sum'
    assert [tc.is_hidden for tc in problem.test_cases] == [False, True]
    args, kwargs = fake_get.call_args
    assert args == ('http://web:8080/problem/sum/testcases', )
    assert kwargs['params'] == {'token': 'tok'}


@pytest.mark.parametrize(
    'response, error',
    [
        (DummyResponse(404), ProblemNotFoundError),
        (DummyResponse(401), PermissionError),
        (DummyResponse(500, 'oops'), PersistenceError),
        (DummyResponse(200, ['not', 'an', 'object']), PersistenceError),
        (DummyResponse(200, {
            'data': {
                'test_cases': []
            }
        }), InvalidInputError),
    ],
)
def test_get_problem_errors(fake_get, response, error):
    fake_get.return_value = response
    with pytest.raises(error):
        BackendProblemSource('http://web:8080').get_problem('sum')


def test_backend_unreachable(fake_get):
    fake_get.side_effect = requests.ConnectionError('refused')
    with pytest.raises(PersistenceError):
        BackendProblemSource('http://web:8080').get_problem('sum')
