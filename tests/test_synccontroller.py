import json
import threading
from datetime import datetime, timedelta
from unittest import mock

import pytest
import requests
import schedule

from notebridge import settings
from notebridge.notes.model.note import Note, CustomTag
from notebridge.notes.model.snapshot import Snapshot
from notebridge.notes.store import LocalStore
from notebridge.settings import SyncConfig, MemorySettingsStore
from notebridge.sync.backend import RemoteBackend
from notebridge.sync.controller import SyncController, SyncResult
from notebridge.sync.errors import UnauthenticatedError, NotFoundError, NotConnectedError, TransportError
from notebridge.sync.gist import GistBackend
from notebridge.sync.scheduler import SyncScheduler
from notebridge.sync.webdav import WebDAVBackend

T1 = '2024-01-01T00:00:00.000Z'
T2 = '2024-01-02T00:00:00.000Z'
T3 = '2024-01-03T00:00:00.000Z'


class FakeBackend(RemoteBackend):
    name = 'fake'
    persistent_handle = True
    warning_bytes = 1024 * 1024
    critical_bytes = 2 * 1024 * 1024

    def __init__(self, remote: Snapshot | None = None):
        super().__init__(session=mock.MagicMock())
        self.remote = remote
        self.uploads = []
        self.error = None
        self.on_upload = None

    def test_connection(self) -> str:
        if self.error:
            raise self.error
        return 'Connected to fake'

    def upload(self, snapshot):
        if self.error:
            raise self.error
        self.uploads.append(snapshot)
        if self.on_upload is not None:
            callback, self.on_upload = self.on_upload, None
            callback()
        self.remote = snapshot
        return 'handle-{}'.format(len(self.uploads))

    def download(self):
        if self.error:
            raise self.error
        if self.remote is None:
            raise NotFoundError('Nothing uploaded yet.', 404)
        return self.remote


def _response(status: int, body: dict | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(body or {}).encode('utf-8')
    return response


class TestSyncController:

    @staticmethod
    def _config(connected: bool = True) -> SyncConfig:
        config = SyncConfig(MemorySettingsStore(), MemorySettingsStore())
        config.backend = settings.BACKEND_GIST
        if connected:
            config.save_token('ghp_token')
        return config

    @staticmethod
    def _controller(tmp_path, backend=None, config=None, clock=datetime.now) -> SyncController:
        store = LocalStore(tmp_path / 'NoteBridge.db', max_bytes=0)
        config = config if config is not None else TestSyncController._config()
        controller = SyncController(store, config, backend=backend, clock=clock)
        controller.scheduler = SyncScheduler(controller.scheduled_upload, config.has_credentials,
                                             scheduler=schedule.Scheduler(), runner=lambda f: f(),
                                             ticker=mock.MagicMock(return_value=threading.Event()))
        return controller

    def test_sync_result(self):
        result = SyncResult(False, 'Nope', error='busy')
        assert result.as_dict() == {'success': False, 'message': 'Nope', 'error': 'busy'}
        assert str(result) == 'Nope'

    def test_make_backend(self):
        config = TestSyncController._config()
        config.set_handle('abc')
        backend = SyncController.make_backend(config)
        assert isinstance(backend, GistBackend)
        assert backend.handle == 'abc'

        config = SyncConfig(MemorySettingsStore(), MemorySettingsStore())
        config.save_webdav('dav.example.com', 'alice', 'pw')
        backend = SyncController.make_backend(config)
        assert isinstance(backend, WebDAVBackend)
        assert backend.url == 'https://dav.example.com/notebridge-notes.json'

        with pytest.raises(NotConnectedError):
            SyncController.make_backend(TestSyncController._config(connected=False))

    def test_upload(self, tmp_path):
        backend = FakeBackend()
        controller = TestSyncController._controller(tmp_path, backend)
        controller.store.add_note('Hello #world')
        result = controller.upload()
        assert result.success
        assert result.data['handle'] == 'handle-1'
        assert result.data['warning'] is None
        assert result.data['size'] == backend.uploads[0].size()
        assert [n.content for n in backend.uploads[0].notes] == ['Hello #world']
        assert controller.config.get_handle() == 'handle-1'
        assert controller.last_sync_time() is not None

    def test_upload_not_connected(self, tmp_path):
        controller = TestSyncController._controller(tmp_path, config=TestSyncController._config(connected=False))
        result = controller.upload()
        assert not result.success
        assert result.data['error'] == 'not_connected'

    def test_upload_error(self, tmp_path):
        backend = FakeBackend()
        backend.error = UnauthenticatedError('Bad credentials', 401)
        controller = TestSyncController._controller(tmp_path, backend)
        result = controller.upload()
        assert not result.success
        assert result.message == 'Bad credentials'
        assert result.data['error'] == 'unauthenticated'
        assert controller.last_sync_time() is None

    def test_upload_unexpected_error(self, tmp_path):
        backend = FakeBackend()
        backend.error = RuntimeError('bug')
        controller = TestSyncController._controller(tmp_path, backend)
        result = controller.upload()
        assert not result.success
        assert result.data['error'] == 'unexpected'

    def test_upload_coalesces(self, tmp_path):
        backend = FakeBackend()
        controller = TestSyncController._controller(tmp_path, backend)
        controller.store.add_note('first')
        queued = []

        def upload_again():
            controller.store.add_note('second')
            queued.append(controller.upload())
            queued.append(controller.upload())

        backend.on_upload = upload_again
        result = controller.upload()
        assert result.success
        assert all(r.success and r.data['queued'] for r in queued)
        assert len(backend.uploads) == 2
        assert [n.content for n in backend.uploads[1].notes] == ['second', 'first']

    def test_busy(self, tmp_path):
        backend = FakeBackend()
        controller = TestSyncController._controller(tmp_path, backend)
        busy = []
        backend.on_upload = lambda: busy.append(controller.download())
        assert controller.upload().success
        assert not busy[0].success
        assert busy[0].data['error'] == 'busy'
        assert controller.download().success

    def test_disconnect_cancels_upload(self, tmp_path):
        backend = FakeBackend()
        controller = TestSyncController._controller(tmp_path, backend)
        backend.on_upload = controller.disconnect
        result = controller.upload()
        assert not result.success
        assert result.data['error'] == 'cancelled'
        assert controller.config.get_handle() is None
        assert controller.last_sync_time() is None
        assert not controller.is_connected()

    def test_download(self, tmp_path):
        remote = Snapshot(notes=[Note('remote old', note_id='1', created_at=T1),
                                 Note('remote new #b', note_id='2', created_at=T3)],
                          custom_tags=[CustomTag('b', tag_id='9')], tag_colors={'#b': 6}, sync_time=T3)
        controller = TestSyncController._controller(tmp_path, FakeBackend(remote))
        controller.store.save_notes([Note('local', note_id='1', created_at=T2)])
        controller.store.save_custom_tags([CustomTag('a', tag_id='8')])
        controller.store.save_tag_colors({'#a': 1})

        result = controller.download()
        assert result.success
        assert result.data['added'] == ['2']
        assert result.data['updated'] == []
        assert result.data['partial'] is False
        notes = controller.store.get_notes()
        assert [(n.id, n.content) for n in notes] == [('2', 'remote new #b'), ('1', 'local')]
        assert [t.name for t in controller.store.get_custom_tags()] == ['#a', '#b']
        assert controller.store.get_tag_colors() == {'#b': 6}
        assert controller.last_sync_time() is not None

    def test_download_updates(self, tmp_path):
        remote = Snapshot(notes=[Note('remote', note_id='1', created_at=T1, updated_at=T3)])
        controller = TestSyncController._controller(tmp_path, FakeBackend(remote))
        controller.store.save_notes([Note('local', note_id='1', created_at=T1)])
        result = controller.download()
        assert result.data['updated'] == ['1']
        assert controller.store.get_notes()[0].content == 'remote'
        assert controller.store.get_tag_colors() == {}

    def test_download_partial(self, tmp_path):
        remote = Snapshot(notes=[Note('recovered', note_id='1')])
        remote.missing_shards = [1, 3]
        controller = TestSyncController._controller(tmp_path, FakeBackend(remote))
        result = controller.download()
        assert result.success
        assert result.data['partial'] is True
        assert result.data['missing_shards'] == [1, 3]
        assert 'shards 1, 3' in result.message
        assert [n.content for n in controller.store.get_notes()] == ['recovered']

    def test_download_not_found(self, tmp_path):
        controller = TestSyncController._controller(tmp_path, FakeBackend())
        result = controller.download()
        assert not result.success
        assert result.data['error'] == 'not_found'

    def test_download_local_store_full(self, tmp_path):
        remote = Snapshot(notes=[Note('x' * 5000, note_id='1')])
        controller = TestSyncController._controller(tmp_path, FakeBackend(remote))
        controller.store.max_bytes = 1000
        result = controller.download()
        assert not result.success
        assert result.data['error'] == 'local_persistence'
        assert 'export a backup' in result.message
        assert controller.last_sync_time() is None

    def test_sync_first_time(self, tmp_path):
        backend = FakeBackend()
        controller = TestSyncController._controller(tmp_path, backend)
        controller.store.add_note('only local')
        result = controller.sync()
        assert result.success
        assert [n.content for n in backend.remote.notes] == ['only local']

    def test_sync(self, tmp_path):
        backend = FakeBackend(Snapshot(notes=[Note('remote', note_id='2', created_at=T3)]))
        controller = TestSyncController._controller(tmp_path, backend)
        controller.store.save_notes([Note('local', note_id='1', created_at=T1)])
        result = controller.sync()
        assert result.success
        assert result.data['added'] == ['2']
        assert result.data['handle'] == 'handle-1'
        assert [n.id for n in backend.uploads[0].notes] == ['2', '1']

    def test_sync_download_error(self, tmp_path):
        backend = FakeBackend()
        backend.error = TransportError('Network error: down')
        controller = TestSyncController._controller(tmp_path, backend)
        result = controller.sync()
        assert not result.success
        assert result.data['error'] == 'transport'
        assert backend.uploads == []

    def test_size_warning(self, tmp_path):
        now = [datetime(2024, 1, 1, 12, 0, 0)]
        backend = FakeBackend()
        backend.warning_bytes = 1
        controller = TestSyncController._controller(tmp_path, backend, clock=lambda: now[0])

        result = controller.upload()
        assert result.data['warning'] == 'warning'
        assert 'Capacity warning' in result.message
        assert controller.config.get_size_warning_at() == now[0]

        now[0] += timedelta(hours=1)
        assert controller.upload().data['warning'] is None

        now[0] += timedelta(hours=24)
        assert controller.upload().data['warning'] == 'warning'
        assert len(backend.uploads) == 3

    def test_size_critical(self, tmp_path):
        backend = FakeBackend()
        backend.warning_bytes = 1
        backend.critical_bytes = 1
        controller = TestSyncController._controller(tmp_path, backend)
        first = controller.upload()
        second = controller.upload()
        assert first.success and second.success
        assert first.data['warning'] == second.data['warning'] == 'critical'

    def test_size_info(self, tmp_path):
        controller = TestSyncController._controller(tmp_path)
        controller.store.add_note('Hello')
        info = controller.size_info()
        assert info['notes_count'] == 1
        assert info['is_warning'] is False
        assert controller.thresholds() == (settings.GIST_WARNING_BYTES, settings.GIST_CRITICAL_BYTES)

        controller.config.backend = settings.BACKEND_WEBDAV
        assert controller.thresholds() == (settings.WEBDAV_WARNING_BYTES, settings.WEBDAV_CRITICAL_BYTES)

    def test_connect_gist(self, tmp_path):
        session = mock.MagicMock()
        session.request.return_value = _response(200, {'login': 'octocat'})
        controller = TestSyncController._controller(tmp_path, config=TestSyncController._config(connected=False))
        controller.session = session
        result = controller.connect_gist('ghp_new')
        assert result.success
        assert 'octocat' in result.message
        assert controller.config.get_token() == 'ghp_new'

        session.request.return_value = _response(401, {'message': 'Bad credentials'})
        result = controller.connect_gist('ghp_bad')
        assert not result.success
        assert result.data['error'] == 'unauthenticated'
        assert not controller.is_connected()

    def test_connect_webdav(self, tmp_path):
        session = mock.MagicMock()
        session.request.return_value = _response(207)
        controller = TestSyncController._controller(tmp_path, config=TestSyncController._config(connected=False))
        controller.session = session
        assert not controller.connect_webdav('', 'alice', 'pw').success
        result = controller.connect_webdav('dav.example.com', 'alice', 'pw')
        assert result.success
        assert controller.config.backend == settings.BACKEND_WEBDAV
        assert session.request.call_args.args == ('PROPFIND', 'https://dav.example.com/')

    def test_connect_starts_autosync(self, tmp_path):
        backend = FakeBackend()
        config = TestSyncController._config(connected=False)
        config.set_autosync_enabled(True)
        controller = TestSyncController._controller(tmp_path, backend, config=config)
        assert not controller.start_autosync()
        assert controller.connect_gist('ghp_token').success
        assert controller.scheduler.is_running

    def test_disconnect(self, tmp_path):
        controller = TestSyncController._controller(tmp_path, FakeBackend())
        controller.config.set_handle('abc')
        controller.set_autosync_enabled(True)
        assert controller.scheduler.is_running
        result = controller.disconnect()
        assert result.success
        assert not controller.scheduler.is_running
        assert not controller.is_connected()
        assert controller.config.get_handle() is None

    def test_disconnect_forgets_backend_handle(self, tmp_path):
        backend = GistBackend('ghp_token', 'abc', session=mock.MagicMock())
        controller = TestSyncController._controller(tmp_path, backend)
        controller.config.set_handle('abc')
        assert controller.disconnect().success
        assert backend.handle is None
        assert controller.config.get_handle() is None

    def test_set_sync_interval(self, tmp_path):
        controller = TestSyncController._controller(tmp_path, FakeBackend())
        result = controller.set_sync_interval(3)
        assert result.success
        assert result.data['interval'] == 3
        assert controller.config.get_sync_interval() == 3

    def test_set_sync_interval_invalid(self, tmp_path):
        controller = TestSyncController._controller(tmp_path, FakeBackend())
        result = controller.set_sync_interval(0)
        assert not result.success
        assert result.data['error'] == 'invalid_interval'
        assert controller.config.get_sync_interval() == 10
        assert not controller.scheduler.is_running

    def test_autosync(self, tmp_path):
        backend = FakeBackend()
        controller = TestSyncController._controller(tmp_path, backend)
        assert controller.set_autosync_enabled(True) is True
        assert controller.scheduler.interval == 10

        controller.set_sync_interval(3)
        assert len(controller.scheduler.scheduler.jobs) == 1
        assert controller.scheduler.scheduler.jobs[0].interval == 3

        controller.scheduler.scheduler.run_all()
        assert len(backend.uploads) == 1

        assert controller.set_autosync_enabled(False) is False
        assert not controller.scheduler.is_running
        assert controller.scheduler.scheduler.jobs == []

    def test_scheduled_upload_failure(self, tmp_path, caplog):
        backend = FakeBackend()
        backend.error = TransportError('Network error: down')
        controller = TestSyncController._controller(tmp_path, backend)
        result = controller.scheduled_upload()
        assert not result.success
        assert 'Automatic sync failed' in caplog.text
