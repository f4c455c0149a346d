"""
Configuration and persisted sync state. Settings are read and written through a small persistence port
(``SettingsStore``) so sync components receive their configuration explicitly instead of reaching for global state.
Non-secret settings live in ``conf.json``; passwords and tokens live in the system keyring.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

import keyring
from decouple import config
from keyring.errors import PasswordDeleteError

from notebridge import helpers
from notebridge.helpers import DateUtil

#: Service name under which secrets are saved in the keyring.
KEYRING_SERVICE: str = 'NoteBridge'

#: Supported remote back ends.
BACKEND_WEBDAV: str = 'webdav'
BACKEND_GIST: str = 'gist'

GIST_WARNING_BYTES: int = config('NOTEBRIDGE_GIST_WARNING_BYTES', default=800 * 1024, cast=int)
GIST_CRITICAL_BYTES: int = config('NOTEBRIDGE_GIST_CRITICAL_BYTES', default=1024 * 1024, cast=int)
#: Largest shard uploaded to a gist. Kept below GitHub's 1 MB limit for a file's inline content.
GIST_MAX_SHARD_BYTES: int = config('NOTEBRIDGE_GIST_MAX_SHARD_BYTES', default=900 * 1024, cast=int)
WEBDAV_WARNING_BYTES: int = config('NOTEBRIDGE_WEBDAV_WARNING_BYTES', default=800 * 1024 * 1024, cast=int)
WEBDAV_CRITICAL_BYTES: int = config('NOTEBRIDGE_WEBDAV_CRITICAL_BYTES', default=1024 * 1024 * 1024, cast=int)
#: Hard per-object cap enforced before uploading to WebDAV. 0 disables the check.
WEBDAV_MAX_BYTES: int = config('NOTEBRIDGE_WEBDAV_MAX_BYTES', default=0, cast=int)
HTTP_TIMEOUT: float = config('NOTEBRIDGE_HTTP_TIMEOUT', default=30.0, cast=float)


class SettingsStore(ABC):
    """
    Persistence port for flat key-value settings.
    """

    @abstractmethod
    def get(self, key: str, default=None):
        pass

    @abstractmethod
    def set(self, key: str, value) -> None:
        pass

    @abstractmethod
    def clear(self, key: str) -> None:
        pass


class MemorySettingsStore(SettingsStore):
    """
    Keeps settings in memory only.
    """

    def __init__(self, initial: dict | None = None):
        self.values: dict = dict(initial or {})

    def get(self, key: str, default=None):
        return self.values.get(key, default)

    def set(self, key: str, value) -> None:
        self.values[key] = value

    def clear(self, key: str) -> None:
        self.values.pop(key, None)


class JsonSettingsStore(SettingsStore):
    """
    Keeps settings in a JSON configuration file, by default ``conf.json`` in the application data folder.
    """

    def __init__(self, conf_file: Path | None = None, defaults: dict | None = None):
        """
        Loads the configuration file, creating it with ``defaults`` if it doesn't exist.

        :param conf_file: path to the configuration file.
        :param defaults: settings written to a newly created configuration file.
        """
        self.conf_file: Path = Path(conf_file) if conf_file is not None else helpers.settings_folder() / 'conf.json'
        self.values: dict = dict(defaults or {})
        if not os.path.exists(self.conf_file):
            self.save()
        self.load()

    def load(self) -> None:
        """
        Load settings from the configuration file.
        """
        with open(self.conf_file) as fp:
            try:
                loaded_settings = json.load(fp)
            except json.decoder.JSONDecodeError:
                raise ValueError("Your configuration file at {} is invalid. Please check syntax.".format(
                    self.conf_file))
        self.values.update(loaded_settings)

    def save(self) -> None:
        self.conf_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.conf_file, 'w') as fp:
            json.dump(self.values, fp, indent=2)

    def get(self, key: str, default=None):
        return self.values.get(key, default)

    def set(self, key: str, value) -> None:
        self.values[key] = value
        self.save()

    def clear(self, key: str) -> None:
        if key in self.values:
            del self.values[key]
            self.save()


class KeyringSecretStore(SettingsStore):
    """
    Keeps secrets in the system keyring.
    """

    def __init__(self, service: str = KEYRING_SERVICE):
        self.service: str = service

    def get(self, key: str, default=None):
        value = keyring.get_password(self.service, key)
        return default if value is None else value

    def set(self, key: str, value) -> None:
        keyring.set_password(self.service, key, value)

    def clear(self, key: str) -> None:
        try:
            keyring.delete_password(self.service, key)
        except PasswordDeleteError:
            pass


class SyncConfig:
    """
    Configuration and persisted state of the sync subsystem. The following settings are kept in ``settings``:

    - ``backend`` - the remote store in use, ``webdav`` or ``gist``.
    - ``webdav_server`` - URL of the WebDAV folder, always ending in ``/``.
    - ``webdav_username`` - username for the WebDAV server.
    - ``gist_id`` - identifier of the gist holding the notes, once created.
    - ``last_sync`` - ISO timestamp of the last successful upload or download.
    - ``autosync`` - if '1', automatic synchronisation is enabled.
    - ``autosync_interval`` - the interval for automatic synchronisation, in minutes.
    - ``size_warning_at`` - time of the last capacity warning, in seconds since the epoch.

    The WebDAV password and GitHub token are kept in ``secrets``.
    """

    #: Default settings
    DEFAULTS = {
        'backend': BACKEND_WEBDAV,
        'webdav_server': '',
        'webdav_username': '',
        'gist_id': '',
        'last_sync': '',
        'autosync': '0',
        'autosync_interval': 10,
        'size_warning_at': 0,
        'log_level': 'info'
    }

    WEBDAV_PASSWORD_KEY: str = 'WEBDAV-PWD'
    GITHUB_TOKEN_KEY: str = 'GITHUB-TOKEN'

    def __init__(self, settings: SettingsStore, secrets: SettingsStore):
        self.settings: SettingsStore = settings
        self.secrets: SettingsStore = secrets

    def _get(self, key: str):
        return self.settings.get(key, SyncConfig.DEFAULTS[key])

    # Back end ---------------------------------------------------------------------------------------------------------

    @property
    def backend(self) -> str:
        return self._get('backend')

    @backend.setter
    def backend(self, value: str) -> None:
        if value not in (BACKEND_WEBDAV, BACKEND_GIST):
            raise ValueError('Unknown back end {}'.format(value))
        self.settings.set('backend', value)

    # Credentials ------------------------------------------------------------------------------------------------------

    @staticmethod
    def normalize_server(server: str) -> str:
        """
        Ensures a WebDAV server address has a scheme and ends with ``/``.

        :param server: the address as entered by the user.
        :return: the normalised address.
        """
        server = server.strip()
        if not server.startswith('http://') and not server.startswith('https://'):
            server = 'https://' + server
        if not server.endswith('/'):
            server += '/'
        return server

    def save_webdav(self, server: str, username: str, password: str) -> None:
        self.settings.set('webdav_server', SyncConfig.normalize_server(server))
        self.settings.set('webdav_username', username)
        self.secrets.set(SyncConfig.WEBDAV_PASSWORD_KEY, password)

    def get_webdav(self) -> tuple[str, str, str]:
        """
        :returns:

            - server (:py:class:`str`) - the WebDAV folder URL.
            - username (:py:class:`str`) - the WebDAV username.
            - password (:py:class:`str`) - the WebDAV password.

        """
        return (self._get('webdav_server'),
                self._get('webdav_username'),
                self.secrets.get(SyncConfig.WEBDAV_PASSWORD_KEY, '') or '')

    def clear_webdav(self) -> None:
        self.settings.set('webdav_server', '')
        self.settings.set('webdav_username', '')
        self.secrets.clear(SyncConfig.WEBDAV_PASSWORD_KEY)

    def save_token(self, token: str) -> None:
        self.secrets.set(SyncConfig.GITHUB_TOKEN_KEY, token)

    def get_token(self) -> str:
        return self.secrets.get(SyncConfig.GITHUB_TOKEN_KEY, '') or ''

    def clear_token(self) -> None:
        self.secrets.clear(SyncConfig.GITHUB_TOKEN_KEY)
        self.clear_handle()

    def has_credentials(self) -> bool:
        """
        :return: True if the credentials required by the configured back end are present.
        """
        if self.backend == BACKEND_GIST:
            return bool(self.get_token())
        return all(self.get_webdav())

    def clear_credentials(self) -> None:
        if self.backend == BACKEND_GIST:
            self.clear_token()
        else:
            self.clear_webdav()

    # Remote handle ----------------------------------------------------------------------------------------------------

    def get_handle(self) -> str | None:
        return self._get('gist_id') or None

    def set_handle(self, handle: str) -> None:
        self.settings.set('gist_id', handle)

    def clear_handle(self) -> None:
        self.settings.set('gist_id', '')

    # Sync state -------------------------------------------------------------------------------------------------------

    def get_last_sync(self) -> str | None:
        return self._get('last_sync') or None

    def set_last_sync(self, when: str | None = None) -> None:
        self.settings.set('last_sync', when or DateUtil.now_iso())

    def is_autosync_enabled(self) -> bool:
        return self._get('autosync') == '1'

    def set_autosync_enabled(self, enabled: bool) -> None:
        self.settings.set('autosync', '1' if enabled else '0')

    def get_sync_interval(self) -> int:
        try:
            return int(self._get('autosync_interval'))
        except (TypeError, ValueError):
            logging.warning('Invalid autosync interval in settings, using default.')
            return SyncConfig.DEFAULTS['autosync_interval']

    def set_sync_interval(self, minutes: int) -> None:
        if int(minutes) < 1:
            raise ValueError('Sync interval must be at least one minute.')
        self.settings.set('autosync_interval', int(minutes))

    def get_size_warning_at(self) -> datetime | None:
        value = self._get('size_warning_at')
        return datetime.fromtimestamp(float(value)) if value else None

    def set_size_warning_at(self, when: datetime) -> None:
        self.settings.set('size_warning_at', when.timestamp())
