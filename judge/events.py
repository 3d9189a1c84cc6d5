import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

import requests

from .constant import SubmissionStatus
from .meta import Submission
from .utils import logger


@dataclass(frozen=True)
class TerminalEvent:
    submission_id: str
    user_id: str
    problem_id: str
    status: SubmissionStatus
    created_at: datetime

    @classmethod
    def from_submission(cls, submission: Submission) -> 'TerminalEvent':
        if not submission.status.is_terminal:
            raise ValueError(
                f'submission {submission.id} is not terminal: {submission.status.value}'
            )
        return cls(
            submission_id=submission.id,
            user_id=submission.user_id,
            problem_id=submission.problem_id,
            status=submission.status,
            created_at=submission.created_at,
        )

    def to_json(self) -> dict:
        return {
            'submission_id': self.submission_id,
            'user_id': self.user_id,
            'problem_id': self.problem_id,
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
        }


class EventBus:
    '''Synchronous fan-out of terminal events to subscribers.'''

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[TerminalEvent], None]] = []

    def subscribe(self, callback: Callable[[TerminalEvent], None]):
        with self._lock:
            self._subscribers.append(callback)

    def publish(self, event: TerminalEvent):
        with self._lock:
            subscribers = [*self._subscribers]
        for callback in subscribers:
            # the submission is already terminal, a failing consumer must not
            # undo or block it
            try:
                callback(event)
            except Exception as exc:
                logger().warning(
                    "terminal event consumer failed [id=%s]: %s",
                    event.submission_id,
                    exc,
                    exc_info=True,
                )


class WebhookNotifier:

    def __init__(self, url: str, token: str = '', timeout: float = 5.0):
        self.url = url
        self.token = token
        self.timeout = timeout

    def __call__(self, event: TerminalEvent):
        logger().info(f'notify webhook [submission_id={event.submission_id}]')
        resp = requests.post(
            self.url,
            json={
                **event.to_json(),
                'token': self.token,
            },
            timeout=self.timeout,
        )
        logger().debug(f'get webhook response: [{resp.status_code}] {resp.text}')
        if not resp.ok:
            logger().warning(
                "webhook rejected event [id=%s, status=%s, resp=%s]",
                event.submission_id,
                resp.status_code,
                resp.text,
            )
