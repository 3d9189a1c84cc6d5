"""
Client for the remote sandboxed execution engine (Judge0).

One `execute` call submits one (source, language, stdin) unit, polls until the
engine reports a final status, and maps the engine's status vocabulary onto
the closed set of `OutcomeKind`. Transient failures are reported, not retried;
retry policy lives in the testcase runner.
"""
import base64
import time
from dataclasses import dataclass
from typing import Optional

import requests

from . import config
from .constant import (
    IN_FLIGHT_STATUSES,
    JUDGE0_STATUS_KINDS,
    Judge0Status,
    Language,
    OutcomeKind,
)
from .exception import (
    EngineProtocolError,
    EngineTransientError,
    InvalidInputError,
)
from .utils import logger

RESULT_FIELDS = 'stdout,stderr,compile_output,message,time,memory,status'
# text fields travel base64 encoded, raw bytes may not be valid UTF-8
ENCODED_FIELDS = ('stdout', 'stderr', 'compile_output', 'message')


@dataclass
class EngineOutcome:
    kind: OutcomeKind
    stdout: str = ''
    stderr: str = ''
    compile_output: str = ''
    message: str = ''
    time: Optional[int] = None  # ms
    memory: Optional[int] = None  # KB
    reason: str = ''
    protocol_error: bool = False

    @property
    def is_completed(self) -> bool:
        return self.kind == OutcomeKind.COMPLETED

    @classmethod
    def compile_error(cls, message: str) -> 'EngineOutcome':
        return cls(kind=OutcomeKind.COMPILE_ERROR, compile_output=message)

    @classmethod
    def runtime_error(
        cls,
        message: str,
        time: Optional[int] = None,
        memory: Optional[int] = None,
        stdout: str = '',
    ) -> 'EngineOutcome':
        return cls(
            kind=OutcomeKind.RUNTIME_ERROR,
            stderr=message,
            stdout=stdout,
            time=time,
            memory=memory,
        )

    @classmethod
    def completed(
        cls,
        stdout: str,
        time: Optional[int] = None,
        memory: Optional[int] = None,
        stderr: str = '',
    ) -> 'EngineOutcome':
        return cls(
            kind=OutcomeKind.COMPLETED,
            stdout=stdout,
            stderr=stderr,
            time=time,
            memory=memory,
        )

    @classmethod
    def timed_out(cls, time: Optional[int] = None) -> 'EngineOutcome':
        return cls(kind=OutcomeKind.TIMED_OUT, time=time)

    @classmethod
    def engine_unavailable(
        cls,
        reason: str,
        protocol_error: bool = False,
    ) -> 'EngineOutcome':
        return cls(
            kind=OutcomeKind.ENGINE_UNAVAILABLE,
            reason=reason,
            protocol_error=protocol_error,
        )


def parse_time_ms(value) -> Optional[int]:
    # Judge0 reports seconds as a decimal string, e.g. "0.012"
    if value is None or value == '':
        return None
    try:
        return int(round(float(value) * 1000))
    except (TypeError, ValueError):
        return None


def parse_memory_kb(value) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def encode_text(value: str) -> str:
    return base64.b64encode(value.encode('utf-8')).decode('ascii')


def decode_text(value) -> str:
    if not value:
        return ''
    try:
        raw = base64.b64decode(value)
    except (TypeError, ValueError) as exc:
        raise EngineProtocolError(
            f'engine field is not base64: {value!r}') from exc
    return raw.decode('utf-8', errors='replace')


def outcome_from_result(status_id: int, payload: dict) -> EngineOutcome:
    '''Map a final Judge0 result onto an engine outcome.'''
    kind = JUDGE0_STATUS_KINDS.get(status_id)
    stdout = payload.get('stdout') or ''
    stderr = payload.get('stderr') or ''
    message = payload.get('message') or ''
    exec_time = parse_time_ms(payload.get('time'))
    memory = parse_memory_kb(payload.get('memory'))
    if kind is None:
        logger().warning(f'unmapped engine status [status_id={status_id}]')
        return EngineOutcome.engine_unavailable(
            f'unknown engine status {status_id}')
    if kind == OutcomeKind.COMPLETED:
        return EngineOutcome.completed(
            stdout=stdout,
            time=exec_time,
            memory=memory,
            stderr=stderr,
        )
    if kind == OutcomeKind.COMPILE_ERROR:
        return EngineOutcome.compile_error(
            payload.get('compile_output') or message)
    if kind == OutcomeKind.RUNTIME_ERROR:
        description = (payload.get('status') or {}).get('description', '')
        return EngineOutcome.runtime_error(
            stderr or message or description,
            time=exec_time,
            memory=memory,
            stdout=stdout,
        )
    if kind == OutcomeKind.TIMED_OUT:
        return EngineOutcome.timed_out(time=exec_time)
    if kind == OutcomeKind.ENGINE_UNAVAILABLE:
        return EngineOutcome.engine_unavailable(
            f'engine internal error: {message}' if message else
            'engine internal error')
    raise AssertionError(f'unhandled outcome kind {kind}')


class ExecutionClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        language_ids: Optional[dict] = None,
        timeout: Optional[float] = None,
        request_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        settings = config.get_judge_settings()
        self.base_url = (base_url or config.JUDGE0_API_URL).rstrip('/')
        self.session = session or requests.Session()
        self.language_ids = language_ids or config.get_language_ids()
        self.timeout = timeout or settings['ENGINE_TIMEOUT']
        self.request_timeout = (request_timeout
                                or settings['ENGINE_REQUEST_TIMEOUT'])
        self.poll_interval = (settings['ENGINE_POLL_INTERVAL']
                              if poll_interval is None else poll_interval)
        self.sleep = sleep
        self.clock = clock
        self.headers = {'Content-Type': 'application/json'}
        if config.JUDGE0_API_KEY:
            self.headers['X-RapidAPI-Key'] = config.JUDGE0_API_KEY
        if config.JUDGE0_API_HOST:
            self.headers['X-RapidAPI-Host'] = config.JUDGE0_API_HOST
        if config.JUDGE0_AUTH_TOKEN:
            self.headers['X-Auth-Token'] = config.JUDGE0_AUTH_TOKEN

    def language_id(self, language: Language) -> int:
        try:
            return self.language_ids[Language(language)]
        except (KeyError, ValueError):
            raise InvalidInputError(f'unsupported language: {language}')

    def execute(
        self,
        language: Language,
        source_code: str,
        stdin: str,
        expected_output: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> EngineOutcome:
        # a caller timeout can only shorten the run
        timeout = self.timeout if timeout is None else min(timeout, self.timeout)
        deadline = self.clock() + timeout
        try:
            token = self._submit(
                language_id=self.language_id(language),
                source_code=source_code,
                stdin=stdin,
                expected_output=expected_output,
                timeout=min(timeout, self.request_timeout),
            )
        except requests.ReadTimeout:
            logger().warning('engine submit timed out')
            return EngineOutcome.engine_unavailable('submit timed out')
        except EngineProtocolError as exc:
            logger().error(f'engine protocol error on submit: {exc}')
            return EngineOutcome.engine_unavailable(str(exc),
                                                    protocol_error=True)
        except EngineTransientError as exc:
            logger().warning(f'engine unavailable on submit: {exc}')
            return EngineOutcome.engine_unavailable(str(exc))
        logger().debug(f'engine accepted run [token={token}]')
        return self._poll(token, deadline)

    def _poll(self, token: str, deadline: float) -> EngineOutcome:
        in_flight = False
        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            try:
                payload = self._fetch(
                    token,
                    timeout=min(remaining, self.request_timeout),
                )
                status_id = self._status_id(payload)
            except requests.ReadTimeout:
                # the engine holds a token for this run, so it is in flight
                in_flight = True
                continue
            except EngineProtocolError as exc:
                logger().error(
                    f'engine protocol error on poll [token={token}]: {exc}')
                return EngineOutcome.engine_unavailable(str(exc),
                                                        protocol_error=True)
            except EngineTransientError as exc:
                logger().warning(
                    f'engine unavailable on poll [token={token}]: {exc}')
                return EngineOutcome.engine_unavailable(str(exc))
            if status_id not in IN_FLIGHT_STATUSES:
                logger().debug(
                    f'engine finished run [token={token}, status_id={status_id}]'
                )
                return outcome_from_result(status_id, payload)
            if status_id == Judge0Status.PROCESSING:
                in_flight = True
            self.sleep(max(0, min(self.poll_interval,
                                  deadline - self.clock())))
        if in_flight:
            logger().info(f'run exceeded deadline [token={token}]')
            return EngineOutcome.timed_out()
        logger().warning(f'run never left the engine queue [token={token}]')
        return EngineOutcome.engine_unavailable(
            'engine did not start the run before the deadline')

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f'{self.base_url}{path}'
        try:
            resp = self.session.request(
                method,
                url,
                headers=self.headers,
                **kwargs,
            )
        except requests.ReadTimeout:
            raise
        except requests.RequestException as exc:
            raise EngineTransientError(
                f'{method} {path} failed: {exc}') from exc
        if resp.status_code == 429:
            raise EngineTransientError('engine rate limit reached')
        if resp.status_code >= 500:
            raise EngineTransientError(
                f'engine returned {resp.status_code}: {resp.text[:200]}')
        if not resp.ok:
            raise EngineProtocolError(
                f'unexpected engine response [{resp.status_code}] {resp.text[:200]}'
            )
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> dict:
        try:
            data = resp.json()
        except ValueError as exc:
            raise EngineProtocolError(
                f'engine response is not JSON: {resp.text[:200]}') from exc
        if not isinstance(data, dict):
            raise EngineProtocolError(
                f'engine response is not an object: {data!r}')
        return data

    def _submit(
        self,
        language_id: int,
        source_code: str,
        stdin: str,
        expected_output: Optional[str],
        timeout: float,
    ) -> str:
        body = {
            'source_code': encode_text(source_code),
            'language_id': language_id,
            'stdin': encode_text(stdin or ''),
        }
        if expected_output is not None:
            body['expected_output'] = encode_text(expected_output)
        resp = self._request(
            'POST',
            '/submissions',
            params={
                'base64_encoded': 'true',
                'wait': 'false',
            },
            json=body,
            timeout=timeout,
        )
        token = self._json(resp).get('token')
        if not token or not isinstance(token, str):
            raise EngineProtocolError('engine response carries no token')
        return token

    def _fetch(self, token: str, timeout: float) -> dict:
        resp = self._request(
            'GET',
            f'/submissions/{token}',
            params={
                'base64_encoded': 'true',
                'fields': RESULT_FIELDS,
            },
            timeout=timeout,
        )
        payload = self._json(resp)
        for field in ENCODED_FIELDS:
            if field in payload:
                payload[field] = decode_text(payload[field])
        return payload

    @staticmethod
    def _status_id(payload: dict) -> int:
        status = payload.get('status')
        if isinstance(status, dict):
            status_id = status.get('id')
        else:
            status_id = payload.get('status_id')
        if isinstance(status_id, bool) or not isinstance(status_id, int):
            raise EngineProtocolError(
                f'engine result carries no status id: {payload!r}')
        return status_id
