"""Status definitions and exceptions for AccountTracker.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions raised by the settings, auth, sync, and validation layers
"""
import enum
import logging
from typing import Dict, Iterable, Optional


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    SettingsNotFound = enum.auto()
    SettingsInvalid = enum.auto()

    # Authentication status
    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()

    # Remote document status
    RemoteServiceError = enum.auto()

    # Data status
    ValidationFailed = enum.auto()
    ImportAborted = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.SettingsNotFound: 'Could not find the settings file.',
    Status.SettingsInvalid: 'The settings file seems to be incomplete, or contains invalid values.',

    Status.ClientSecretNotFound: 'Could not find the google client secret. Have you set up a valid Google client secret?',
    Status.ClientSecretInvalid: 'Could not verify the client secret. Have you set up a valid Google client secret?',
    Status.CredsInvalid: 'Could not verify the credentials. Please sign in again to your Google account.',
    Status.NotAuthenticated: 'Not authenticated. Please sign in to your Google account.',

    Status.RemoteServiceError: 'The Google Sheets request failed.',

    Status.ValidationFailed: 'The data is invalid.',
    Status.ImportAborted: 'The import was aborted.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in AccountTracker.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        detail (str): The additional context passed to the exception, if any.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.detail = message or ''
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..ui.actions import signals
        signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class SettingsNotFoundException(BaseStatusException):
    """Exception raised when the settings file cannot be found."""
    status = Status.SettingsNotFound


class SettingsInvalidException(BaseStatusException):
    """Exception raised when the settings file is invalid or malformed."""
    status = Status.SettingsInvalid


class ClientSecretNotFoundException(BaseStatusException):
    """Exception raised when the Google OAuth client secret file cannot be found."""
    status = Status.ClientSecretNotFound


class ClientSecretInvalidException(BaseStatusException):
    """Exception raised when the Google OAuth client secret is invalid or malformed."""
    status = Status.ClientSecretInvalid


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored Google credentials are invalid or corrupt."""
    status = Status.CredsInvalid


class AuthenticationRequiredException(BaseStatusException):
    """Exception raised when a remote call is attempted without a usable credential."""
    status = Status.NotAuthenticated


class RemoteServiceException(BaseStatusException):
    """Exception raised when the Google Sheets backend rejects or fails a request.

    Attributes:
        status_code (Optional[int]): The HTTP status returned by the backend, when known.
    """
    status = Status.RemoteServiceError

    def __init__(self, message: str = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ValidationException(BaseStatusException):
    """Exception raised when input data is rejected before it reaches the state store."""
    status = Status.ValidationFailed


class ImportAbortedException(BaseStatusException):
    """Exception raised when a bulk import references accounts that cannot be resolved.

    Attributes:
        names (list[str]): The distinct unresolved account names, sorted.
    """
    status = Status.ImportAborted

    def __init__(self, names: Iterable[str]):
        self.names = sorted(set(names))
        super().__init__(f'Unknown accounts: {", ".join(self.names)}.')
