import os
import logging
import queue
import secrets
from flask import Flask, request, jsonify
from judge.config import JUDGE_TOKEN
from judge.constant import TimeFilter
from judge.exception import (
    InvalidInputError,
    PersistenceError,
    ProblemNotFoundError,
    SubmissionIdNotFoundError,
)
from judge.service import build_service

logging.basicConfig(
    filename=os.getenv("JUDGE_LOG_FILE") or None,
    level=logging.DEBUG,
)
app = Flask(__name__)
if __name__ != "__main__":
    # let flask app use gunicorn's logger
    gunicorn_logger = logging.getLogger("gunicorn.error")
    app.logger.handlers = gunicorn_logger.handlers
    app.logger.setLevel(gunicorn_logger.level)
    logging.getLogger().setLevel(gunicorn_logger.level)

    # Allow overriding log level via environment variable
    if os.getenv("JUDGE_DEBUG", "").lower() == "true":
        app.logger.setLevel(logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)
logger = app.logger

MAX_PAGE_LIMIT = 100

# setup judge service
JUDGE_CONFIG = os.getenv(
    "JUDGE_CONFIG",
    ".config/judge.json",
)
SERVICE = build_service(JUDGE_CONFIG)
DISPATCHER = SERVICE.dispatcher
DISPATCHER.start()


def ok(data, status_code=200):
    return jsonify({
        "status": "ok",
        "msg": "ok",
        "data": data,
    }), status_code


def err(msg, status_code):
    return jsonify({
        "status": "err",
        "msg": msg,
        "data": None,
    }), status_code


def page_args(default_limit):
    page = max(1, request.args.get("page", 1, type=int))
    limit = request.args.get("limit", default_limit, type=int)
    return page, min(max(1, limit), MAX_PAGE_LIMIT)


def time_filter_arg():
    try:
        return TimeFilter(request.args.get("time_filter", "all"))
    except ValueError:
        return None


@app.errorhandler(PersistenceError)
def storage_unavailable(e):
    logger.error(f"storage unavailable: {e}")
    return err("storage is unavailable now, please retry later.", 503)


@app.post("/submissions")
def submit():
    values = request.get_json(silent=True) or request.values
    token = str(values.get("token", ""))
    if not secrets.compare_digest(token, JUDGE_TOKEN):
        logger.debug(f"get invalid token: {token}")
        return err("invalid token", 403)
    try:
        submission = SERVICE.submit(
            user_id=values.get("user_id"),
            problem_id=values.get("problem_id"),
            language=values.get("language"),
            code=values.get("code"),
        )
    except InvalidInputError as e:
        return err(str(e), 400)
    except ProblemNotFoundError as e:
        return err(str(e), 404)
    except PermissionError:
        logger.error("problem backend rejected the judge token")
        return err("can not load problem now.", 503)
    except queue.Full:
        return err(
            "task queue is full now.\n"
            "please wait a moment and re-send the submission.",
            500,
        )
    logger.debug(f"send submission {submission.id} to dispatcher")
    return ok(submission.public_view(), 202)


@app.get("/submissions/<submission_id>")
def get_submission(submission_id: str):
    try:
        submission = SERVICE.pipeline.get_submission(submission_id)
    except SubmissionIdNotFoundError as e:
        return err(str(e), 404)
    return ok(submission.public_view())


@app.get("/submissions")
def list_submissions():
    user_id = request.args.get("user_id", "")
    if not user_id:
        return err("missing user id", 400)
    page, limit = page_args(10)
    ret = SERVICE.pipeline.list_submissions(
        user_id,
        problem_id=request.args.get("problem_id") or None,
        page=page,
        limit=limit,
    )
    ret["submissions"] = [s.public_view() for s in ret["submissions"]]
    return ok(ret)


@app.get("/leaderboard")
def leaderboard():
    time_filter = time_filter_arg()
    if time_filter is None:
        return err("time_filter should be one of all, weekly, monthly", 400)
    page, limit = page_args(50)
    ret = SERVICE.leaderboard.get_leaderboard(time_filter, page, limit)
    ret["leaderboard"] = [e.model_dump(mode="json") for e in ret["leaderboard"]]
    return ok(ret)


@app.get("/leaderboard/users/<user_id>")
def user_rank(user_id: str):
    time_filter = time_filter_arg()
    if time_filter is None:
        return err("time_filter should be one of all, weekly, monthly", 400)
    entry = SERVICE.leaderboard.get_user_rank(user_id, time_filter)
    if entry is None:
        return err(f"user {user_id} is not on the leaderboard", 404)
    return ok(entry.model_dump(mode="json"))


@app.get("/leaderboard/users/<user_id>/stats")
def user_stats(user_id: str):
    return ok(SERVICE.leaderboard.get_user_stats(user_id))


@app.get("/status")
def status():
    ret = {
        "load": DISPATCHER.queue.qsize() / DISPATCHER.MAX_TASK_COUNT,
    }
    # if token is provided
    if secrets.compare_digest(JUDGE_TOKEN, request.args.get("token", "")):
        ret.update({
            "queueSize": DISPATCHER.queue.qsize(),
            "maxTaskCount": DISPATCHER.MAX_TASK_COUNT,
            "workerCount": DISPATCHER.worker_count,
            "maxWorkerCount": DISPATCHER.MAX_WORKER_COUNT,
            "submissions": sorted(DISPATCHER.running),
            "running": DISPATCHER.do_run,
        })
    return jsonify(ret), 200


# for local debug
# if __name__ == "__main__":
#     app.run(host="0.0.0.0", port=5000, debug=True)
