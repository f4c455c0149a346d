import json
import logging
from unittest import mock

import pytest

from notebridge import settings
from notebridge.cli.nbcli import NoteBridgeCli, parse_args
from notebridge.notes.model.note import Note
from notebridge.notes.store import LocalStore
from notebridge.settings import SyncConfig, MemorySettingsStore
from notebridge.sync.controller import SyncResult


class TestNoteBridgeCli:

    @pytest.fixture(autouse=True)
    def _reset_logging(self):
        yield
        logger = logging.getLogger()
        for handler in list(logger.handlers):
            if isinstance(handler, logging.FileHandler):
                logger.removeHandler(handler)
                handler.close()

    @staticmethod
    def _run(tmp_path, *argv, config=None):
        args = parse_args(list(argv) + ['--log-dir', str(tmp_path)])
        store = LocalStore(tmp_path / 'NoteBridge.db', max_bytes=0)
        config = config if config is not None else SyncConfig(MemorySettingsStore(), MemorySettingsStore())
        return NoteBridgeCli(args, store=store, config=config)

    @staticmethod
    def _gist_config() -> SyncConfig:
        config = SyncConfig(MemorySettingsStore(), MemorySettingsStore())
        config.backend = settings.BACKEND_GIST
        config.save_token('ghp_token')
        return config

    def test_parse_args(self):
        args = parse_args(['--upload', '--backend', 'gist'])
        assert 'upload' in args
        assert 'download' not in args
        assert args.backend == 'gist'
        assert args.log_level == 'info'
        assert parse_args(['--import', 'backup.json']).import_file.name == 'backup.json'

    def test_export_import(self, tmp_path):
        backup = tmp_path / 'backup.json'
        cli = TestNoteBridgeCli._run(tmp_path, '--size-info')
        cli.store.save_notes([Note('exported', note_id='1')])

        cli.args = parse_args(['--export', str(backup)])
        cli.run()
        assert [n['id'] for n in json.loads(backup.read_text())['notes']] == ['1']

        cli.store.save_notes([])
        cli.args = parse_args(['--import', str(backup)])
        cli.run()
        assert [n.id for n in cli.store.get_notes()] == ['1']

    def test_import_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as e:
            TestNoteBridgeCli._run(tmp_path, '--import', str(tmp_path / 'missing.json'))
        assert e.value.code == 8

    def test_no_credentials(self, tmp_path):
        with pytest.raises(SystemExit) as e:
            TestNoteBridgeCli._run(tmp_path, '--upload')
        assert e.value.code == 3

    def test_webdav_settings(self, tmp_path):
        config = SyncConfig(MemorySettingsStore(), MemorySettingsStore())
        with pytest.raises(SystemExit):
            TestNoteBridgeCli._run(tmp_path, '--upload', '--webdav-server', 'dav.example.com',
                                   '--webdav-username', 'alice', config=config)
        assert config.get_webdav() == ('https://dav.example.com/', 'alice', '')

    def test_upload(self, tmp_path):
        with mock.patch('notebridge.cli.nbcli.SyncController') as controller:
            controller.return_value.upload.return_value = SyncResult(True, 'Upload successful.')
            TestNoteBridgeCli._run(tmp_path, '--upload', config=TestNoteBridgeCli._gist_config())
            controller.return_value.upload.assert_called_once()
            controller.return_value.download.assert_not_called()

    def test_upload_failure(self, tmp_path):
        with mock.patch('notebridge.cli.nbcli.SyncController') as controller:
            controller.return_value.upload.return_value = SyncResult(False, 'Bad credentials',
                                                                     error='unauthenticated')
            with pytest.raises(SystemExit) as e:
                TestNoteBridgeCli._run(tmp_path, '--upload', config=TestNoteBridgeCli._gist_config())
            assert e.value.code == 5

    def test_autosync_invalid_interval(self, tmp_path):
        config = TestNoteBridgeCli._gist_config()
        with pytest.raises(SystemExit) as e:
            TestNoteBridgeCli._run(tmp_path, '--autosync', '0', config=config)
        assert e.value.code == 9
        assert config.get_sync_interval() == 10
        assert not config.is_autosync_enabled()

    def test_custom_config_file(self, tmp_path):
        conf_file = tmp_path / 'custom.json'
        conf_file.write_text(json.dumps({'backend': 'gist', 'autosync_interval': 7}))
        args = parse_args(['--size-info', '--config', str(conf_file), '--log-dir', str(tmp_path)])
        with mock.patch('notebridge.settings.keyring') as keyring:
            keyring.get_password.return_value = None
            cli = NoteBridgeCli(args, store=LocalStore(tmp_path / 'NoteBridge.db', max_bytes=0))
        assert cli.config.backend == settings.BACKEND_GIST
        assert cli.config.get_sync_interval() == 7

    def test_missing_config_file(self, tmp_path):
        args = parse_args(['--size-info', '--config', str(tmp_path / 'missing.json'), '--log-dir', str(tmp_path)])
        with pytest.raises(SystemExit) as e:
            NoteBridgeCli(args, store=LocalStore(tmp_path / 'NoteBridge.db', max_bytes=0))
        assert e.value.code == 2

    def test_github_token_prompt(self, tmp_path):
        config = SyncConfig(MemorySettingsStore(), MemorySettingsStore())
        with mock.patch('notebridge.cli.nbcli.getpass', return_value='ghp_typed'), \
                mock.patch('notebridge.cli.nbcli.SyncController') as controller:
            controller.return_value.connect_gist.return_value = SyncResult(True, 'Connected to GitHub')
            controller.return_value.test_connection.return_value = SyncResult(True, 'Connected to GitHub')
            TestNoteBridgeCli._run(tmp_path, '--backend', 'gist', '--github-token', '--test-connection',
                                   config=config)
            controller.return_value.connect_gist.assert_called_once_with('ghp_typed')
