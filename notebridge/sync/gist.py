"""
Contains ``GistBackend``, which mirrors the snapshot to a private GitHub Gist. The notes are split into shards, each
stored as a separate file of the gist named ``notebridge-shard-<index>``, so no single file exceeds GitHub's size
limit.
"""

from __future__ import annotations

import json
import logging
from typing import List

import requests

from notebridge import settings
from notebridge.notes.model.snapshot import Snapshot, Shard
from notebridge.sync import merger, sharder
from notebridge.sync.backend import RemoteBackend, raise_for_status
from notebridge.sync.errors import ConflictError, NotFoundError, RemoteFormatError, SyncError


class GistBackend(RemoteBackend):
    """
    Sharded remote store. The gist is created on the first upload; its id is the handle reused by later uploads.
    """

    name = settings.BACKEND_GIST
    persistent_handle = True
    warning_bytes = settings.GIST_WARNING_BYTES
    critical_bytes = settings.GIST_CRITICAL_BYTES

    API_URL: str = 'https://api.github.com/gists'
    USER_URL: str = 'https://api.github.com/user'
    #: Prefix of every shard file in the gist.
    SHARD_PREFIX: str = 'notebridge-shard-'
    #: Name of the single file written by versions without sharding.
    LEGACY_FILE_NAME: str = 'notebridge-notes.json'
    DESCRIPTION: str = 'NoteBridge notes backup - automatic sync'

    def __init__(self,
                 token: str,
                 handle: str | None = None,
                 max_shard_bytes: int | None = None,
                 session: requests.Session | None = None,
                 timeout: float | None = None):
        """
        :param token: a GitHub token allowed to manage gists.
        :param handle: id of the gist created by a previous upload, if any.
        :param max_shard_bytes: the size limit of a shard file.
        :param session: HTTP session to use.
        :param timeout: timeout of every request, in seconds.
        """
        super().__init__(session, timeout)
        self.token: str = token
        self._handle: str | None = handle
        self.max_shard_bytes: int = max_shard_bytes if max_shard_bytes is not None else settings.GIST_MAX_SHARD_BYTES

    @property
    def handle(self) -> str | None:
        return self._handle

    def reset_handle(self) -> None:
        self._handle = None

    @property
    def headers(self) -> dict:
        return {
            'Authorization': 'Bearer {}'.format(self.token),
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': '2022-11-28'
        }

    def test_connection(self) -> str:
        response = self.request('GET', GistBackend.USER_URL, headers=self.headers)
        raise_for_status(response, 'Connection test')
        login = response.json().get('login', '')
        return 'Connected to GitHub as {}'.format(login) if login else 'Connected to GitHub'

    @staticmethod
    def shard_file_name(index: int) -> str:
        return '{0}{1}'.format(GistBackend.SHARD_PREFIX, index)

    def shard_files(self, snapshot: Snapshot) -> dict:
        """
        Splits a snapshot into shards and renders each as a gist file.

        :param snapshot: the snapshot to upload.
        :return: mapping of file name to gist file content.
        """
        shards = sharder.shard_snapshot(snapshot, self.max_shard_bytes)
        logging.debug('Snapshot split into {} shard(s).'.format(len(shards)))
        return {GistBackend.shard_file_name(shard.index): {'content': shard.to_json()} for shard in shards}

    def upload(self, snapshot: Snapshot) -> str | None:
        files = self.shard_files(snapshot)
        if not self._handle:
            return self._create(files)
        try:
            return self._update(files)
        except ConflictError:
            logging.warning('Gist {} disappeared during upload, creating a new one.'.format(self._handle))
            self.reset_handle()
            return self._create(files)

    def _create(self, files: dict) -> str:
        payload = {
            'description': GistBackend.DESCRIPTION,
            'public': False,
            'files': files
        }
        response = self.request('POST', GistBackend.API_URL, headers=self.headers, json=payload)
        raise_for_status(response, 'Creating gist')
        self._handle = response.json()['id']
        logging.info('Created gist {}'.format(self._handle))
        return self._handle

    def _update(self, files: dict) -> str:
        try:
            gist = self._fetch()
        except NotFoundError:
            logging.warning('Gist {} not found, creating a new one.'.format(self._handle))
            self.reset_handle()
            return self._create(files)

        stale = [name for name in gist.get('files', {})
                 if name.startswith(GistBackend.SHARD_PREFIX) and name not in files]
        if stale:
            logging.debug('Removing stale shard files: {}'.format(stale))
        payload = {'files': dict(files)}
        for name in stale:
            payload['files'][name] = None

        response = self.request('PATCH', '{0}/{1}'.format(GistBackend.API_URL, self._handle),
                                headers=self.headers, json=payload)
        if response.status_code == 404:
            raise ConflictError('Gist {} was deleted while uploading.'.format(self._handle), 404)
        raise_for_status(response, 'Updating gist')
        return self._handle

    def _fetch(self) -> dict:
        response = self.request('GET', '{0}/{1}'.format(GistBackend.API_URL, self._handle), headers=self.headers)
        raise_for_status(response, 'Fetching gist')
        return response.json()

    def _file_content(self, gist_file: dict) -> str:
        """
        Returns the content of a gist file. GitHub truncates large files in API responses; those are fetched from
        their raw URL.
        """
        if gist_file.get('truncated') and gist_file.get('raw_url'):
            response = self.request('GET', gist_file['raw_url'], headers=self.headers)
            raise_for_status(response, 'Fetching gist file')
            response.encoding = 'utf-8'
            return response.text
        return gist_file.get('content') or ''

    def download(self) -> Snapshot:
        """
        Fetches the gist and reassembles the snapshot from its shard files.

        Shard files that cannot be fetched or parsed are skipped and reported in ``missing_shards`` of the returned
        snapshot, so the notes in the readable shards are still recovered. A gist without shard files is read as a
        single legacy snapshot file.

        :return: the remote snapshot.
        """
        if not self._handle:
            raise NotFoundError('No gist has been created yet.')
        files = self._fetch().get('files', {})

        shard_names = [name for name in files if name.startswith(GistBackend.SHARD_PREFIX)]
        if not shard_names:
            legacy = files.get(GistBackend.LEGACY_FILE_NAME)
            if legacy is None:
                raise NotFoundError('Backup file not found in gist {}.'.format(self._handle))
            try:
                return Snapshot.from_dict(json.loads(self._file_content(legacy)))
            except (ValueError, TypeError, KeyError) as e:
                raise RemoteFormatError('Backup file in gist could not be read: {}'.format(e))

        shards: List[Shard] = []
        unreadable: List[int] = []
        for name in shard_names:
            try:
                shards.append(Shard.from_dict(json.loads(self._file_content(files[name]))))
            except (ValueError, TypeError, KeyError, SyncError) as e:
                logging.warning('Skipping unreadable shard file {0}: {1}'.format(name, e))
                suffix = name[len(GistBackend.SHARD_PREFIX):]
                if suffix.isdigit():
                    unreadable.append(int(suffix))

        if not shards:
            raise RemoteFormatError('None of the {} shard files in the gist could be read.'.format(len(shard_names)))

        snapshot = merger.combine(shards)
        snapshot.missing_shards = sorted(set(snapshot.missing_shards) | set(unreadable))
        return snapshot
