"""
Errors raised while synchronising. Remote back ends raise these; ``SyncController`` turns them into result records so
they never reach the caller as exceptions.
"""

from __future__ import annotations


class SyncError(Exception):
    """
    Base class for every synchronisation failure.
    """

    #: Short name of the failure kind, reported in result records.
    kind: str = 'sync'

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message: str = message
        self.status: int | None = status


class UnauthenticatedError(SyncError):
    """
    Raised when the remote store rejects the credentials.
    """
    kind = 'unauthenticated'


class NotFoundError(SyncError):
    """
    Raised when the remote object does not exist.
    """
    kind = 'not_found'


class QuotaExceededError(SyncError):
    """
    Raised when the payload is too large for the remote store.
    """
    kind = 'quota_exceeded'


class TransportError(SyncError):
    """
    Raised on network-level failures and unexpected HTTP responses.
    """
    kind = 'transport'


class ConflictError(SyncError):
    """
    Raised when the remote object disappeared between reading and writing it.
    """
    kind = 'conflict'


class RemoteFormatError(SyncError):
    """
    Raised when remote content exists but none of it can be parsed.
    """
    kind = 'remote_format'


class NotConnectedError(SyncError):
    """
    Raised when an operation needs credentials that have not been configured.
    """
    kind = 'not_connected'


class BusyError(SyncError):
    """
    Raised when a sync operation is requested while another one is in progress.
    """
    kind = 'busy'


class LocalPersistenceFailure(SyncError):
    """
    Raised when the local store rejects a write, e.g. because it is full. In-memory state stays usable.
    """
    kind = 'local_persistence'

    def __init__(self, message: str):
        super().__init__('{} Please export a backup of your notes.'.format(message))
