from enum import Enum, IntEnum


class Language(str, Enum):
    PYTHON = 'python'
    JAVA = 'java'
    CPP = 'cpp'
    C = 'c'


# Judge0 CE language ids
DEFAULT_LANGUAGE_IDS = {
    Language.PYTHON: 71,
    Language.JAVA: 62,
    Language.CPP: 54,
    Language.C: 50,
}


class SubmissionStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    ACCEPTED = 'accepted'
    WRONG_ANSWER = 'wrong_answer'
    TIME_LIMIT_EXCEEDED = 'time_limit_exceeded'
    RUNTIME_ERROR = 'runtime_error'
    COMPILATION_ERROR = 'compilation_error'

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: 'SubmissionStatus') -> bool:
        return target in _TRANSITIONS[self]


TERMINAL_STATUSES = frozenset({
    SubmissionStatus.ACCEPTED,
    SubmissionStatus.WRONG_ANSWER,
    SubmissionStatus.TIME_LIMIT_EXCEEDED,
    SubmissionStatus.RUNTIME_ERROR,
    SubmissionStatus.COMPILATION_ERROR,
})

_TRANSITIONS = {
    SubmissionStatus.PENDING:
    frozenset({SubmissionStatus.PROCESSING} | TERMINAL_STATUSES),
    SubmissionStatus.PROCESSING:
    TERMINAL_STATUSES,
    SubmissionStatus.ACCEPTED:
    frozenset(),
    SubmissionStatus.WRONG_ANSWER:
    frozenset(),
    SubmissionStatus.TIME_LIMIT_EXCEEDED:
    frozenset(),
    SubmissionStatus.RUNTIME_ERROR:
    frozenset(),
    SubmissionStatus.COMPILATION_ERROR:
    frozenset(),
}


class CaseStatus(str, Enum):
    PASSED = 'passed'
    WRONG_ANSWER = 'wrong_answer'
    TIME_LIMIT_EXCEEDED = 'time_limit_exceeded'
    RUNTIME_ERROR = 'runtime_error'
    COMPILATION_ERROR = 'compilation_error'


# first match wins
VERDICT_PRECEDENCE = (
    (CaseStatus.COMPILATION_ERROR, SubmissionStatus.COMPILATION_ERROR),
    (CaseStatus.RUNTIME_ERROR, SubmissionStatus.RUNTIME_ERROR),
    (CaseStatus.TIME_LIMIT_EXCEEDED, SubmissionStatus.TIME_LIMIT_EXCEEDED),
    (CaseStatus.WRONG_ANSWER, SubmissionStatus.WRONG_ANSWER),
)


class OutcomeKind(str, Enum):
    COMPILE_ERROR = 'compile_error'
    RUNTIME_ERROR = 'runtime_error'
    COMPLETED = 'completed'
    TIMED_OUT = 'timed_out'
    ENGINE_UNAVAILABLE = 'engine_unavailable'


class Judge0Status(IntEnum):
    IN_QUEUE = 1
    PROCESSING = 2
    ACCEPTED = 3
    WRONG_ANSWER = 4
    TIME_LIMIT_EXCEEDED = 5
    COMPILATION_ERROR = 6
    RUNTIME_ERROR_SIGSEGV = 7
    RUNTIME_ERROR_SIGXFSZ = 8
    RUNTIME_ERROR_SIGFPE = 9
    RUNTIME_ERROR_SIGABRT = 10
    RUNTIME_ERROR_NZEC = 11
    RUNTIME_ERROR_OTHER = 12
    INTERNAL_ERROR = 13
    EXEC_FORMAT_ERROR = 14


IN_FLIGHT_STATUSES = frozenset({
    Judge0Status.IN_QUEUE,
    Judge0Status.PROCESSING,
})

# Every terminal Judge0 status id. Ids missing here are treated as
# engine_unavailable by the execution client.
JUDGE0_STATUS_KINDS = {
    Judge0Status.ACCEPTED: OutcomeKind.COMPLETED,
    Judge0Status.WRONG_ANSWER: OutcomeKind.COMPLETED,
    Judge0Status.TIME_LIMIT_EXCEEDED: OutcomeKind.TIMED_OUT,
    Judge0Status.COMPILATION_ERROR: OutcomeKind.COMPILE_ERROR,
    Judge0Status.RUNTIME_ERROR_SIGSEGV: OutcomeKind.RUNTIME_ERROR,
    Judge0Status.RUNTIME_ERROR_SIGXFSZ: OutcomeKind.RUNTIME_ERROR,
    Judge0Status.RUNTIME_ERROR_SIGFPE: OutcomeKind.RUNTIME_ERROR,
    Judge0Status.RUNTIME_ERROR_SIGABRT: OutcomeKind.RUNTIME_ERROR,
    Judge0Status.RUNTIME_ERROR_NZEC: OutcomeKind.RUNTIME_ERROR,
    Judge0Status.RUNTIME_ERROR_OTHER: OutcomeKind.RUNTIME_ERROR,
    Judge0Status.INTERNAL_ERROR: OutcomeKind.ENGINE_UNAVAILABLE,
    Judge0Status.EXEC_FORMAT_ERROR: OutcomeKind.RUNTIME_ERROR,
}


class DiagnosticPolicy(str, Enum):
    NONE = 'none'
    MESSAGES = 'messages'
    FULL = 'full'


class TimeFilter(str, Enum):
    ALL = 'all'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'


TIME_FILTER_DAYS = {
    TimeFilter.ALL: None,
    TimeFilter.WEEKLY: 7,
    TimeFilter.MONTHLY: 30,
}
