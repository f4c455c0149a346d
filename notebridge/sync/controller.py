"""
This is the sync controller. It contains all operations required to mirror the local notes to a remote store and to
bring remote changes back. These are called by the CLI, but can be called separately if imported.

Every public operation returns a ``SyncResult``; errors are logged and reported in the result, never raised.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable

import requests

from notebridge import settings
from notebridge.notes.model.snapshot import build_snapshot, describe_size
from notebridge.notes.store import LocalStore
from notebridge.settings import SyncConfig
from notebridge.sync import merger
from notebridge.sync.backend import RemoteBackend
from notebridge.sync.errors import SyncError, NotConnectedError, NotFoundError, BusyError
from notebridge.sync.gist import GistBackend
from notebridge.sync.scheduler import SyncScheduler
from notebridge.sync.webdav import WebDAVBackend


class SyncResult:
    """
    Outcome of a sync operation: whether it succeeded, a message for the user, and operation-specific fields in
    ``data``.
    """

    def __init__(self, success: bool, message: str, **data):
        self.success: bool = success
        self.message: str = message
        self.data: dict = data

    def as_dict(self) -> dict:
        result = {'success': self.success, 'message': self.message}
        result.update(self.data)
        return result

    def __repr__(self):
        return 'SyncResult(success={0}, message={1!r})'.format(self.success, self.message)

    def __str__(self):
        return self.message


class SyncController:
    """
    Coordinates the local store, the configured remote back end and the autosync scheduler.

    Only one operation runs at a time. An upload requested while an upload or full sync is running is queued: the
    running operation makes one more pass once it finishes, picking up the latest local state. Any other operation
    requested meanwhile is refused as busy.
    """

    #: Minimum time between two capacity warnings.
    WARNING_PERIOD: timedelta = timedelta(hours=24)

    def __init__(self,
                 store: LocalStore,
                 config: SyncConfig,
                 backend: RemoteBackend | None = None,
                 session: requests.Session | None = None,
                 scheduler: SyncScheduler | None = None,
                 clock: Callable[[], datetime] = datetime.now):
        """
        :param store: the local store.
        :param config: sync configuration and state.
        :param backend: the remote back end. If None, one is built from ``config`` for every operation.
        :param session: HTTP session handed to back ends built from ``config``.
        :param scheduler: the autosync scheduler. A scheduler running :py:meth:`scheduled_upload` is created if None.
        :param clock: source of the current time.
        """
        self.store: LocalStore = store
        self.config: SyncConfig = config
        self.backend: RemoteBackend | None = backend
        self.session: requests.Session | None = session
        self.clock: Callable[[], datetime] = clock
        self.scheduler: SyncScheduler = scheduler if scheduler is not None else SyncScheduler(
            self.scheduled_upload, config.has_credentials, clock=clock)
        self._lock = threading.Lock()
        self._in_flight: str | None = None
        self._pending: bool = False
        self._generation: int = 0

    # Back ends --------------------------------------------------------------------------------------------------------

    @staticmethod
    def make_backend(config: SyncConfig, session: requests.Session | None = None) -> RemoteBackend:
        """
        Builds the back end selected in the configuration.

        :param config: the sync configuration.
        :param session: HTTP session to use.
        :return: the back end.
        """
        if not config.has_credentials():
            raise NotConnectedError('Not connected to a remote store.')
        if config.backend == settings.BACKEND_GIST:
            return GistBackend(config.get_token(), config.get_handle(), session=session)
        server, username, password = config.get_webdav()
        return WebDAVBackend(server, username, password, session=session)

    def get_backend(self) -> RemoteBackend:
        if self.backend is not None:
            return self.backend
        return SyncController.make_backend(self.config, self.session)

    def thresholds(self) -> tuple[int, int]:
        """
        :return: the warning and critical size thresholds of the configured back end.
        """
        backend_class = GistBackend if self.config.backend == settings.BACKEND_GIST else WebDAVBackend
        backend = self.backend or backend_class
        return backend.warning_bytes, backend.critical_bytes

    # Guards -----------------------------------------------------------------------------------------------------------

    @staticmethod
    def _guard(action: str, func: Callable[[], SyncResult]) -> SyncResult:
        try:
            return func()
        except SyncError as e:
            error = '{0} failed: {1}'.format(action, e.message)
            logging.critical(error)
            return SyncResult(False, e.message, error=e.kind)
        except Exception as e:
            logging.exception('{} failed unexpectedly.'.format(action))
            return SyncResult(False, '{0} failed: {1}'.format(action, e), error='unexpected')

    def _exclusive(self, operation: str, func: Callable[[], SyncResult], coalesce: bool = False) -> SyncResult:
        with self._lock:
            if self._in_flight is not None:
                if coalesce and self._in_flight in ('upload', 'sync'):
                    self._pending = True
                    logging.debug('Upload requested during {}, queued.'.format(self._in_flight))
                    return SyncResult(True, 'A sync is already in progress; your latest changes will be uploaded '
                                            'when it finishes.', queued=True)
                message = 'Cannot {0} while {1} is in progress.'.format(operation, self._in_flight)
                logging.warning(message)
                return SyncResult(False, message, error=BusyError.kind)
            self._in_flight = operation

        finished = False
        try:
            while True:
                result = func()
                with self._lock:
                    if not self._pending:
                        self._in_flight = None
                        finished = True
                        return result
                    self._pending = False
                logging.debug('Running queued {}.'.format(operation))
        finally:
            if not finished:
                with self._lock:
                    self._in_flight = None
                    self._pending = False

    def _cancelled(self, generation: int) -> SyncResult | None:
        if generation != self._generation:
            message = 'Sync cancelled: the remote store was disconnected.'
            logging.warning(message)
            return SyncResult(False, message, error='cancelled')
        return None

    # Connection -------------------------------------------------------------------------------------------------------

    def is_connected(self) -> bool:
        return self.config.has_credentials()

    def test_connection(self) -> SyncResult:
        """
        Checks that the configured remote store is reachable and accepts the credentials.

        :return: the result of the check.
        """
        def _test():
            message = self.get_backend().test_connection()
            logging.debug(message)
            return SyncResult(True, message)

        return SyncController._guard('Connection test', _test)

    def _connect(self) -> SyncResult:
        result = self.test_connection()
        if not result.success:
            self.config.clear_credentials()
            return result
        if self.config.is_autosync_enabled():
            self.start_autosync()
        return result

    def connect_webdav(self, server: str, username: str, password: str) -> SyncResult:
        """
        Saves WebDAV credentials and checks them. The credentials are cleared again if the check fails.

        :param server: URL of the WebDAV folder.
        :param username: the WebDAV username.
        :param password: the WebDAV password.
        :return: the result of the connection check.
        """
        if not server or not username or not password:
            return SyncResult(False, 'Server, username and password are all required.', error=NotConnectedError.kind)
        self.config.backend = settings.BACKEND_WEBDAV
        self.config.save_webdav(server, username, password)
        return self._connect()

    def connect_gist(self, token: str) -> SyncResult:
        """
        Saves a GitHub token and checks it. The token is cleared again if the check fails.

        :param token: the GitHub token.
        :return: the result of the connection check.
        """
        if not token:
            return SyncResult(False, 'A GitHub token is required.', error=NotConnectedError.kind)
        self.config.backend = settings.BACKEND_GIST
        self.config.save_token(token)
        return self._connect()

    def disconnect(self) -> SyncResult:
        """
        Stops autosync and forgets the credentials and the remote handle. An operation still running when this is
        called completes its network call, but its result is discarded and local state is left untouched.
        """
        self._generation += 1
        self.stop_autosync()
        self.config.clear_credentials()
        self.config.clear_handle()
        if self.backend is not None:
            self.backend.reset_handle()
        logging.info('Disconnected from remote store.')
        return SyncResult(True, 'Disconnected.')

    # Sync operations --------------------------------------------------------------------------------------------------

    def _size_warning(self, info: dict) -> tuple[str | None, str | None]:
        if info['is_critical']:
            return 'critical', ('Data size ({0} MB) has reached the capacity of the remote store. Please export a '
                                'backup and clean up old notes.').format(info['mb'])
        if info['is_warning']:
            now = self.clock()
            last = self.config.get_size_warning_at()
            if last is None or now - last > SyncController.WARNING_PERIOD:
                self.config.set_size_warning_at(now)
                return 'warning', ('Capacity warning: {0} KB in use ({1}%). Consider exporting a backup and cleaning '
                                   'up old notes.').format(info['kb'], info['percentage'])
        return None, None

    def _upload_once(self) -> SyncResult:
        generation = self._generation
        backend = self.get_backend()
        snapshot = build_snapshot(self.store)
        info = describe_size(snapshot, backend.warning_bytes, backend.critical_bytes)
        logging.info('Data size: {0} KB ({1} MB)'.format(info['kb'], info['mb']))

        handle = backend.upload(snapshot)
        cancelled = self._cancelled(generation)
        if cancelled:
            return cancelled
        if backend.persistent_handle and handle:
            self.config.set_handle(handle)
        self.config.set_last_sync()

        message = 'Upload successful.'
        warning, warning_message = self._size_warning(info)
        if warning:
            logging.warning(warning_message)
            message = '{0} {1}'.format(message, warning_message)
        logging.info(message)
        return SyncResult(True, message, size=info['bytes'], handle=handle, warning=warning)

    def _download_once(self) -> SyncResult:
        generation = self._generation
        remote = self.get_backend().download()
        cancelled = self._cancelled(generation)
        if cancelled:
            return cancelled

        local = build_snapshot(self.store)
        merged = merger.merge_snapshot(local, remote)
        self.store.save_notes(merged.notes)
        self.store.save_custom_tags(merged.custom_tags)
        self.store.save_tag_colors(merged.tag_colors)
        self.config.set_last_sync()

        local_by_id = {note.id: note for note in local.notes}
        added = [note.id for note in merged.notes if note.id not in local_by_id]
        updated = [note.id for note in merged.notes if note.id in local_by_id and note is not local_by_id[note.id]]
        message = 'Download successful: {0} note(s) added, {1} updated.'.format(len(added), len(updated))
        if merged.partial:
            message += ' Some remote data could not be read (shards {}); recovered what was available.'.format(
                ', '.join(str(i) for i in merged.missing_shards))
            logging.warning(message)
        else:
            logging.info(message)
        return SyncResult(True, message, added=added, updated=updated, notes_count=len(merged.notes),
                          partial=merged.partial, missing_shards=list(merged.missing_shards))

    def _sync_once(self) -> SyncResult:
        try:
            download = self._download_once()
        except NotFoundError:
            logging.info('No remote copy yet, uploading local notes.')
            download = SyncResult(True, 'No remote copy yet.', added=[], updated=[], partial=False,
                                  missing_shards=[])
        if not download.success:
            return download
        upload = self._upload_once()
        if not upload.success:
            return upload
        data = dict(download.data)
        data.update(upload.data)
        return SyncResult(True, '{0} {1}'.format(download.message, upload.message), **data)

    def upload(self) -> SyncResult:
        """
        Uploads a fresh snapshot of the local store, replacing the remote copy.

        :return: the result. On success, ``data`` holds ``size``, ``handle`` and ``warning`` (None, 'warning' or
            'critical'). If an upload was already running, the result has ``queued`` set instead.
        """
        return self._exclusive('upload', lambda: SyncController._guard('Upload', self._upload_once), coalesce=True)

    def download(self) -> SyncResult:
        """
        Downloads the remote copy and merges it into the local store.

        :return: the result. On success, ``data`` holds ``added`` and ``updated`` note ids, ``notes_count``,
            ``partial`` and ``missing_shards``.
        """
        return self._exclusive('download', lambda: SyncController._guard('Download', self._download_once))

    def sync(self) -> SyncResult:
        """
        Full round trip: downloads and merges the remote copy, then uploads the merged state. A remote store without a
        copy yet is not an error; the local notes are simply uploaded.
        """
        return self._exclusive('sync', lambda: SyncController._guard('Sync', self._sync_once))

    def scheduled_upload(self) -> SyncResult:
        """
        Upload run by the autosync scheduler. Failures are only logged.
        """
        result = self.upload()
        if not result.success:
            logging.warning('Automatic sync failed: {}'.format(result.message))
        return result

    # Information ------------------------------------------------------------------------------------------------------

    def last_sync_time(self) -> str | None:
        return self.config.get_last_sync()

    def size_info(self) -> dict:
        """
        Describes the size of the local data relative to the configured remote store's thresholds.

        :return: see :py:func:`notebridge.notes.model.snapshot.describe_size`.
        """
        warning_bytes, critical_bytes = self.thresholds()
        return describe_size(build_snapshot(self.store), warning_bytes, critical_bytes)

    # Autosync ---------------------------------------------------------------------------------------------------------

    def start_autosync(self) -> bool:
        """
        Starts autosync with the configured interval, if it is enabled and credentials are present.

        :return: True if autosync is running.
        """
        self.scheduler.stop()
        if not self.config.is_autosync_enabled():
            return False
        return self.scheduler.start(self.config.get_sync_interval())

    def stop_autosync(self) -> None:
        self.scheduler.stop()

    def set_autosync_enabled(self, enabled: bool) -> bool:
        """
        Enables or disables autosync and starts or stops the scheduler accordingly.

        :param enabled: True to enable autosync.
        :return: True if autosync is running.
        """
        self.config.set_autosync_enabled(enabled)
        if enabled:
            return self.start_autosync()
        self.stop_autosync()
        return False

    def set_sync_interval(self, minutes: int) -> SyncResult:
        """
        Changes the autosync interval. A running scheduler switches to the new interval right away.

        :param minutes: the new interval.
        :return: the result. Fails if ``minutes`` is below one minute.
        """
        try:
            self.config.set_sync_interval(minutes)
        except (TypeError, ValueError) as e:
            logging.critical('Invalid sync interval {0}: {1}'.format(minutes, e))
            return SyncResult(False, str(e), error='invalid_interval')
        if self.config.is_autosync_enabled():
            if self.scheduler.is_running:
                self.scheduler.set_interval(minutes)
            else:
                self.start_autosync()
        return SyncResult(True, 'Sync interval set to {} minute(s).'.format(minutes), interval=minutes)
