"""
Contains ``WebDAVBackend``, which mirrors the snapshot to a single JSON file in a WebDAV folder.
"""

from __future__ import annotations

import json
import logging

import requests
from requests.auth import HTTPBasicAuth

from notebridge import settings
from notebridge.notes.model.snapshot import Snapshot
from notebridge.sync.backend import RemoteBackend, raise_for_status
from notebridge.sync.errors import UnauthenticatedError, NotFoundError, QuotaExceededError, RemoteFormatError


class WebDAVBackend(RemoteBackend):
    """
    Single-file remote store. Every upload overwrites the file as a whole.
    """

    name = settings.BACKEND_WEBDAV
    warning_bytes = settings.WEBDAV_WARNING_BYTES
    critical_bytes = settings.WEBDAV_CRITICAL_BYTES

    #: Name of the file holding the snapshot.
    FILE_NAME: str = 'notebridge-notes.json'

    def __init__(self,
                 server: str,
                 username: str,
                 password: str,
                 max_object_bytes: int | None = None,
                 session: requests.Session | None = None,
                 timeout: float | None = None):
        """
        :param server: URL of the WebDAV folder, ending in ``/``.
        :param username: the WebDAV username.
        :param password: the WebDAV password.
        :param max_object_bytes: largest file the server accepts. Larger snapshots are refused before sending. 0 or
            None disables the check.
        :param session: HTTP session to use.
        :param timeout: timeout of every request, in seconds.
        """
        super().__init__(session, timeout)
        self.server: str = server
        self.auth: HTTPBasicAuth = HTTPBasicAuth(username, password)
        self.max_object_bytes: int = max_object_bytes if max_object_bytes is not None else settings.WEBDAV_MAX_BYTES

    @property
    def url(self) -> str:
        return self.server + WebDAVBackend.FILE_NAME

    @property
    def handle(self) -> str | None:
        return self.url

    def test_connection(self) -> str:
        response = self.request('PROPFIND', self.server, auth=self.auth, headers={'Depth': '0'})
        if response.status_code == 401:
            raise UnauthenticatedError('Username or password rejected by {}'.format(self.server), 401)
        raise_for_status(response, 'Connection test')
        logging.debug('WebDAV connection test returned HTTP {}'.format(response.status_code))
        return 'Connected to {}'.format(self.server)

    def upload(self, snapshot: Snapshot) -> str | None:
        body = snapshot.to_json().encode('utf-8')
        if self.max_object_bytes and len(body) > self.max_object_bytes:
            raise QuotaExceededError('Data size ({0} bytes) exceeds the server limit of {1} bytes.'.format(
                len(body), self.max_object_bytes))

        logging.info('Uploading {0:.2f} KB to {1}'.format(len(body) / 1024, self.url))
        response = self.request('PUT', self.url, auth=self.auth, data=body,
                                headers={'Content-Type': 'application/json; charset=utf-8'})
        if response.status_code == 507:
            raise QuotaExceededError('Not enough storage space on the server.', 507)
        raise_for_status(response, 'Upload')
        return self.url

    def download(self) -> Snapshot:
        response = self.request('GET', self.url, auth=self.auth)
        if response.status_code == 404:
            raise NotFoundError('No notes file found on the server.', 404)
        raise_for_status(response, 'Download')
        try:
            response.encoding = 'utf-8'
            return Snapshot.from_dict(json.loads(response.text))
        except (ValueError, TypeError, KeyError) as e:
            raise RemoteFormatError('Notes file on the server could not be read: {}'.format(e))
