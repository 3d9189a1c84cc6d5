import logging

import redis
from flask import current_app, has_app_context

from . import config

_redis_client = None


def logger() -> logging.Logger:
    if has_app_context():
        return current_app.logger
    return logging.getLogger('gunicorn.error')


def get_redis_client() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(config.REDIS_URL)
    return _redis_client
