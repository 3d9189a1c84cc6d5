__all__ = [
    'JudgeError',
    'InvalidInputError',
    'ProblemNotFoundError',
    'SubmissionIdNotFoundError',
    'DuplicatedSubmissionIdError',
    'InvalidTransitionError',
    'PersistenceError',
    'EngineTransientError',
    'EngineProtocolError',
    'PipelineTimeoutError',
    'EvaluationAbortedError',
]


class JudgeError(Exception):
    pass


class InvalidInputError(JudgeError, ValueError):
    '''Rejected before a submission is created.'''


class ProblemNotFoundError(JudgeError, LookupError):
    pass


class SubmissionIdNotFoundError(JudgeError, LookupError):
    pass


class DuplicatedSubmissionIdError(JudgeError):
    pass


class InvalidTransitionError(JudgeError):
    '''A submission status may only move forward.'''


class PersistenceError(JudgeError):
    '''Storage layer is unavailable.'''


class EngineTransientError(JudgeError):
    '''Network failure, 5xx or rate limit from the execution engine.'''


class EngineProtocolError(JudgeError):
    '''Unparseable or unexpected response shape from the execution engine.'''


class PipelineTimeoutError(JudgeError):
    pass


class EvaluationAbortedError(JudgeError):
    '''The submission reached a terminal status while it was evaluated.'''
