"""
Custom exceptions for the incremental preprocessing workflow
"""


class IncrementalPreprocessingError(Exception):
    """Base exception for workflow errors"""
    pass


class InvalidDatasetError(IncrementalPreprocessingError):
    """Raised when the input dataset is empty, has no columns or lacks a configured column"""
    pass


class SamplingError(IncrementalPreprocessingError):
    """Raised when a sample cannot be drawn for the requested stage"""
    pass


class UnknownQuestionError(IncrementalPreprocessingError):
    """Raised when an answer references a question that is not pending"""
    pass


class HITLPortError(IncrementalPreprocessingError):
    """Raised when the answer port fails or returns something that is not an answer"""
    pass


class WorkflowCancelledError(IncrementalPreprocessingError):
    """Raised when the caller's cancellation event is observed"""
    pass


class WorkflowStateError(IncrementalPreprocessingError):
    """Raised on an illegal state transition, e.g. bulk apply without a ready verdict"""
    pass
