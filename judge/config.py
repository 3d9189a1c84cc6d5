import json
import os
from pathlib import Path

# web backend config
BACKEND_API = os.getenv(
    'BACKEND_API',
    'http://web:8080',
)
# service token shared with the web backend
JUDGE_TOKEN = os.getenv(
    'JUDGE_TOKEN',
    'KoNoJudgeDa',
)

# ============================================================
# Execution Engine (Judge0) Configuration
# ============================================================
JUDGE0_API_URL = os.getenv(
    'JUDGE0_API_URL',
    'http://judge0:2358',
).rstrip('/')
# RapidAPI hosted Judge0
JUDGE0_API_KEY = os.getenv('JUDGE0_API_KEY', '')
JUDGE0_API_HOST = os.getenv('JUDGE0_API_HOST', '')
# self-hosted Judge0 with AUTHN_TOKEN enabled
JUDGE0_AUTH_TOKEN = os.getenv('JUDGE0_AUTH_TOKEN', '')
# e.g. '{"python": 92}' to pin another interpreter version
JUDGE0_LANGUAGE_IDS = os.getenv('JUDGE0_LANGUAGE_IDS', '')

# storage config, empty means in-memory repositories
DATABASE_URL = os.getenv('DATABASE_URL', '')
# "database" or "backend"
PROBLEM_SOURCE = os.getenv('PROBLEM_SOURCE', 'database')
# enables cross-process leaderboard locks
REDIS_URL = os.getenv('REDIS_URL', '')
NOTIFY_WEBHOOK_URL = os.getenv('NOTIFY_WEBHOOK_URL', '')

# "none", "messages" or "full"
DIAGNOSTIC_POLICY = os.getenv('DIAGNOSTIC_POLICY', 'messages')
DIAGNOSTIC_MAX_LENGTH = int(os.getenv('DIAGNOSTIC_MAX_LENGTH', '2000'))

_DEFAULT_JUDGE_CONFIG_PATH = Path(
    os.getenv('JUDGE_CONFIG', '.config/judge.json'))

_DEFAULTS = {
    # worker pool
    'QUEUE_SIZE': 64,
    'MAX_WORKER_COUNT': 4,
    'SWEEP_INTERVAL': 30,
    # execution client, seconds
    'ENGINE_TIMEOUT': 30.0,
    'ENGINE_REQUEST_TIMEOUT': 10.0,
    'ENGINE_POLL_INTERVAL': 1.0,
    # testcase runner
    'ENGINE_RETRY_COUNT': 3,
    'ENGINE_BACKOFF_BASE': 1.0,
    'ENGINE_BACKOFF_MAX': 16.0,
    # pipeline
    'PIPELINE_ATTEMPTS': 2,
    'PIPELINE_TIMEOUT': 300,
}


def _load_judge_config(path: Path) -> dict:
    try:
        with path.open() as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}


def get_judge_settings(config_path: str | Path | None = None) -> dict:
    """
    Resolve worker pool, retry and timeout knobs.

    Precedence: environment variable > JSON config file > built-in default.
    Values keep the type of their built-in default.
    """
    path = Path(config_path) if config_path else _DEFAULT_JUDGE_CONFIG_PATH
    cfg = _load_judge_config(path) if path else {}
    settings = {}
    for key, default in _DEFAULTS.items():
        raw = os.getenv(key, cfg.get(key, default))
        settings[key] = type(default)(raw)
    return settings


def get_language_ids() -> dict:
    from .constant import DEFAULT_LANGUAGE_IDS, Language
    ids = dict(DEFAULT_LANGUAGE_IDS)
    if not JUDGE0_LANGUAGE_IDS:
        return ids
    try:
        overrides = json.loads(JUDGE0_LANGUAGE_IDS)
    except json.JSONDecodeError:
        return ids
    for lang, lang_id in overrides.items():
        ids[Language(lang)] = int(lang_id)
    return ids
