"""
Contains ``RemoteBackend``, the capability set every remote store offers, and the translation of HTTP responses into
sync errors shared by all back ends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import requests

from notebridge import settings
from notebridge.notes.model.snapshot import Snapshot
from notebridge.sync.errors import (UnauthenticatedError, NotFoundError, QuotaExceededError, TransportError)


def error_message(response: requests.Response) -> str:
    """
    :param response: a failed HTTP response.
    :return: the error message sent by the server, or the HTTP reason phrase.
    """
    try:
        data = response.json()
        if isinstance(data, dict) and data.get('message'):
            return str(data['message'])
    except ValueError:
        pass
    return response.reason or ''


def raise_for_status(response: requests.Response, action: str) -> None:
    """
    Raises the sync error matching a failed HTTP response. Successful responses are ignored.

    :param response: the HTTP response.
    :param action: what was being done, used in the error message, e.g. ``Upload``.
    """
    status = response.status_code
    if 200 <= status < 300:
        return
    detail = error_message(response)
    message = '{0} failed: {1} (HTTP {2})'.format(action, detail, status) if detail else \
        '{0} failed (HTTP {1})'.format(action, status)
    if status in (401, 403):
        raise UnauthenticatedError(message, status)
    if status == 404:
        raise NotFoundError(message, status)
    if status in (413, 507) or (status == 422 and ('too large' in detail.lower() or 'size' in detail.lower())):
        raise QuotaExceededError(message, status)
    raise TransportError(message, status)


class RemoteBackend(ABC):
    """
    A remote store the snapshot is mirrored to.
    """

    #: Name of this back end, as used in the configuration.
    name: str = ''
    #: If True, the handle returned by :py:meth:`upload` must be stored and passed back on the next run.
    persistent_handle: bool = False
    #: Serialized snapshot size at which the user is warned.
    warning_bytes: int = 0
    #: Serialized snapshot size at which the remote store is considered full.
    critical_bytes: int = 0

    def __init__(self, session: requests.Session | None = None, timeout: float | None = None):
        """
        :param session: HTTP session to use. A new session is created if None.
        :param timeout: timeout of every request, in seconds.
        """
        self.session: requests.Session = session if session is not None else requests.Session()
        self.timeout: float = timeout if timeout is not None else settings.HTTP_TIMEOUT

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Sends an HTTP request. Network failures are raised as :py:class:`TransportError`.

        :param method: the HTTP method.
        :param url: the URL.
        :param kwargs: passed on to :py:meth:`requests.Session.request`.
        :return: the response, whatever its status.
        """
        kwargs.setdefault('timeout', self.timeout)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise TransportError('Network error: {}'.format(e))

    @abstractmethod
    def test_connection(self) -> str:
        """
        Checks that the remote store is reachable and accepts the credentials, without changing anything.

        :return: a success message.
        """

    @abstractmethod
    def upload(self, snapshot: Snapshot) -> str | None:
        """
        Replaces the remote copy with ``snapshot``.

        :param snapshot: the snapshot to upload.
        :return: the handle of the remote object.
        """

    @abstractmethod
    def download(self) -> Snapshot:
        """
        Fetches the remote copy.

        :return: the remote snapshot.
        """

    @property
    def handle(self) -> str | None:
        return None

    def reset_handle(self) -> None:
        """
        Forgets the remote object created by earlier uploads, so the next upload creates a new one.
        """

    def __str__(self):
        return self.name
