"""Exceptions raised by the client merge engine.

Each error carries the HTTP status the API layer answers with, so routes
can translate any ``ClientMergeError`` without knowing the concrete type.
"""


class ClientMergeError(Exception):
    """Base exception for client merge errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(ClientMergeError):
    """Missing or invalid actor credentials."""

    status_code = 401


class AuthorizationError(ClientMergeError):
    """Actor lacks the merge permission in the organization."""

    status_code = 403


class NotFoundError(ClientMergeError):
    """A requested client or merge log does not exist in the organization."""

    status_code = 400


class ValidationError(ClientMergeError):
    """The merge request is malformed or names an ineligible client."""

    status_code = 400


class MergeInProgressError(ClientMergeError):
    """Another merge or undo holds one of the involved clients."""

    status_code = 409


class UndoConflictError(ClientMergeError):
    """The merge was already undone or its records changed since."""

    status_code = 409


class UndoWindowExpiredError(ClientMergeError):
    """The undo window for the merge has closed."""

    status_code = 410


class PersistenceError(ClientMergeError):
    """A write the merge cannot continue without failed."""

    status_code = 500


class PartialReparentError(ClientMergeError):
    """A single dependent table could not be processed.

    Never surfaced to callers: the engine records the message as the table's
    skip reason and moves on.
    """

    def __init__(self, key: str, reason: str):
        super().__init__(f"{key}: {reason}")
        self.key = key
        self.reason = reason
