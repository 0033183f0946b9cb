from typing import Optional


def error_message_detail(error, error_detail) -> str:
    """
    Builds an error message that points at the file and line where the
    active exception was raised.
    """
    _, _, exc_tb = error_detail.exc_info()
    if exc_tb is None:
        return str(error)

    while exc_tb.tb_next is not None:
        exc_tb = exc_tb.tb_next
    file_name = exc_tb.tb_frame.f_code.co_filename
    return "Error occurred in python script [{0}] line [{1}]: {2}".format(
        file_name, exc_tb.tb_lineno, str(error)
    )


class CustomException(Exception):
    """
    Base exception for the project.

    Usage:
        raise CustomException("plain message")
        raise CustomException(e, sys)   # adds file/line of the active exception
    """

    def __init__(self, error_message, error_detail: Optional[object] = None):
        if error_detail is not None:
            message = error_message_detail(error_message, error_detail)
        else:
            message = str(error_message)
        super().__init__(message)
        self.error_message = message

    def __str__(self):
        return self.error_message


class ConfigurationError(CustomException):
    """Missing or invalid configuration, model or grammar assets. Fatal at startup."""


class EngineStartupError(CustomException):
    """The inference process could not be launched or never became healthy."""


class InferenceError(CustomException):
    """A single classification request failed. Recorded against the job."""


class ImagePreprocessError(InferenceError):
    """The job's image could not be read, decoded or re-encoded."""


class OutputValidationError(CustomException):
    """Engine output is not the expected three-field JSON envelope."""


class QueueTransportError(CustomException):
    """Transient failure talking to the work queue."""


class StoreError(CustomException):
    """Failure writing a job outcome to the products table."""


class GrammarCompileError(CustomException):
    """The taxonomy tree cannot be turned into a consistent grammar."""


class TaxonomyError(CustomException):
    """The taxonomy document is unusable (unknown vertical, broken tree)."""


__all__ = [
    "CustomException",
    "ConfigurationError",
    "EngineStartupError",
    "InferenceError",
    "ImagePreprocessError",
    "OutputValidationError",
    "QueueTransportError",
    "StoreError",
    "GrammarCompileError",
    "TaxonomyError",
]
