import math
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .constant import TIME_FILTER_DAYS, SubmissionStatus, TimeFilter
from .events import TerminalEvent
from .meta import LeaderboardEntry
from .repository import LeaderboardRepository, SubmissionRepository, utcnow
from .utils import logger


class UserLocks:
    '''One in-process lock per user id.'''

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, user_id: str):
        with self._guard:
            lock = self._locks.setdefault(user_id, threading.Lock())
        with lock:
            yield


class RedisUserLocks:
    '''One Redis lock per user id, for several judge processes.'''

    def __init__(self, client, timeout: int = 30):
        self.client = client
        self.timeout = timeout

    @contextmanager
    def hold(self, user_id: str):
        with self.client.lock(f'leaderboard-user-{user_id}-lock',
                              timeout=self.timeout):
            yield


def rank_entries(entries: List[LeaderboardEntry]) -> List[LeaderboardEntry]:
    """
    Order by solved count, then by who got there first.

    Rank is recomputed from the full set on every read and never stored.
    """
    far_future = datetime.max.replace(tzinfo=timezone.utc)
    ordered = sorted(
        entries,
        key=lambda e: (
            -e.total_solved,
            e.last_submission_at or far_future,
            e.user_id,
        ),
    )
    return [
        e.model_copy(update={'rank': i}) for i, e in enumerate(ordered, 1)
    ]


class LeaderboardProjector:

    def __init__(
        self,
        leaderboard: LeaderboardRepository,
        submissions: Optional[SubmissionRepository] = None,
        locks=None,
    ):
        self.leaderboard = leaderboard
        self.submissions = submissions
        self.locks = locks or UserLocks()

    def on_submission_terminal(self, event: TerminalEvent) -> LeaderboardEntry:
        if not event.status.is_terminal:
            raise ValueError(
                f'submission {event.submission_id} is not terminal')
        accepted = event.status == SubmissionStatus.ACCEPTED
        with self.locks.hold(event.user_id):
            entry = self.leaderboard.apply_terminal(
                user_id=event.user_id,
                problem_id=event.problem_id,
                accepted=accepted,
                at=event.created_at,
            )
        logger().debug(
            f'leaderboard updated [user_id={event.user_id}, total_solved={entry.total_solved}]'
        )
        return entry

    __call__ = on_submission_terminal

    def _since(self, time_filter, now=None) -> Optional[datetime]:
        days = TIME_FILTER_DAYS[TimeFilter(time_filter)]
        if days is None:
            return None
        return (now or utcnow()) - timedelta(days=days)

    def ranked(self, time_filter=TimeFilter.ALL,
               now=None) -> List[LeaderboardEntry]:
        return rank_entries(
            self.leaderboard.list_entries(since=self._since(time_filter,
                                                            now)))

    def get_leaderboard(
        self,
        time_filter=TimeFilter.ALL,
        page: int = 1,
        limit: int = 50,
        now=None,
    ) -> dict:
        page = max(1, page)
        limit = max(1, limit)
        ranked = self.ranked(time_filter, now)
        offset = (page - 1) * limit
        return {
            'leaderboard': ranked[offset:offset + limit],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': len(ranked),
                'pages': math.ceil(len(ranked) / limit),
            },
            'time_filter': TimeFilter(time_filter).value,
        }

    def get_user_rank(self,
                      user_id: str,
                      time_filter=TimeFilter.ALL,
                      now=None) -> Optional[LeaderboardEntry]:
        for entry in self.ranked(time_filter, now):
            if entry.user_id == user_id:
                return entry
        return None

    def get_user_stats(self, user_id: str) -> dict:
        if self.submissions is None:
            raise RuntimeError('user stats need a submission repository')
        counts = self.submissions.count_statuses(user_id)
        current = self.get_user_rank(user_id)
        return {
            'submission_stats': {
                'total_submissions': sum(counts.values()),
                **{
                    status.value: count
                    for status, count in counts.items()
                },
            },
            'current_rank': {
                'rank': current.rank if current else None,
                'total_solved': current.total_solved if current else 0,
            },
        }
