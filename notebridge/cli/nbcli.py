from __future__ import annotations

import argparse
import logging
import os
import pathlib
import sys
import time
from getpass import getpass
from pathlib import Path

from notebridge import helpers
from notebridge import settings
from notebridge.notes.store import LocalStore
from notebridge.settings import SyncConfig, JsonSettingsStore, KeyringSecretStore
from notebridge.sync.controller import SyncController, SyncResult


class NoteBridgeCli:
    """
    Defines the functionality of the NoteBridge CLI.
    """

    def __init__(self, args, store: LocalStore | None = None, config: SyncConfig | None = None):
        self.args = args
        self.logger = self.setup_logging()
        self.config: SyncConfig = config if config is not None else self.load_config()
        self.store: LocalStore = store if store is not None else LocalStore()
        self.apply_settings()
        self.controller: SyncController = SyncController(self.store, self.config)
        self.run()

    def run(self) -> None:
        """
        Runs the action requested on the command line.
        """
        if 'disconnect' in self.args:
            NoteBridgeCli.__process_return(self.controller.disconnect, "Failed to disconnect.", 3)
            return
        if 'export' in self.args:
            self.export_data()
            return
        if 'import_file' in self.args:
            self.import_data()
            return
        if 'size_info' in self.args:
            self.show_size_info()
            return

        if not self.authenticate():
            return
        if 'test_connection' in self.args:
            NoteBridgeCli.__process_return(self.controller.test_connection, "Connection test failed.", 4)
        if 'upload' in self.args:
            logging.info('Uploading notes...')
            NoteBridgeCli.__process_return(self.controller.upload, "Upload failed.", 5)
        if 'download' in self.args:
            logging.info('Downloading notes...')
            NoteBridgeCli.__process_return(self.controller.download, "Download failed.", 6)
        if 'sync' in self.args:
            logging.info('Synchronising notes...')
            NoteBridgeCli.__process_return(self.controller.sync, "Synchronisation failed.", 7)
        if 'autosync' in self.args:
            self.autosync(self.args.autosync)
        logging.info("Synchronisation tasks completed")

    @staticmethod
    def __process_return(cb, error: str, code: int) -> SyncResult:
        """
        Process the result of one of the controller methods. If there is an error, this is logged and the CLI exits.

        :param cb: The controller function to run.
        :param error: The error message to display on failure.
        :param code: The exit code to use on error.
        """
        result = cb()
        if not result.success:
            logging.critical('{0} {1}'.format(error, result.message))
            sys.exit(code)
        logging.info(result.message)
        return result

    def load_config(self) -> SyncConfig:
        """
        Load settings from the configuration file. This is normally ``conf.json`` in the NoteBridge data folder, but may
        be overridden with the --config option.
        """
        if 'config' in self.args:
            if os.path.exists(self.args.config):
                conf_file = self.args.config
                self.logger.info('Using custom config file: {}'.format(conf_file))
            else:
                self.logger.critical('Configuration file {} not found.'.format(self.args.config))
                sys.exit(2)
        else:
            conf_file = helpers.settings_folder() / 'conf.json'
            self.logger.info('Using default config file: {}'.format(conf_file))

        try:
            return SyncConfig(JsonSettingsStore(conf_file, SyncConfig.DEFAULTS), KeyringSecretStore())
        except ValueError as e:
            logging.critical(str(e))
            sys.exit(20)

    def apply_settings(self) -> None:
        """
        Override any settings from the configuration file which have been specified as command-line options.
        """
        if 'backend' in self.args:
            self.config.backend = self.args.backend
        if 'webdav_server' in self.args or 'webdav_username' in self.args:
            server, username, password = self.config.get_webdav()
            server = self.args.webdav_server if 'webdav_server' in self.args else server
            username = self.args.webdav_username if 'webdav_username' in self.args else username
            self.config.save_webdav(server, username, password)
        logging.debug("Using the {} back end.".format(self.config.backend))

    def authenticate(self) -> bool:
        """
        Makes sure credentials for the selected back end are available. If the --webdav-password or --github-token
        option is used, this method asks for the secret regardless of whether one is saved. If no credentials are
        available, the CLI exits with an error.

        :return: True on finding or receiving credentials.
        """
        if self.config.backend == settings.BACKEND_GIST:
            if 'github_token' in self.args:
                token = getpass('GitHub Token> ')
                NoteBridgeCli.__process_return(lambda: self.controller.connect_gist(token),
                                               "Failed to connect to GitHub.", 4)
                return True
        elif 'webdav_password' in self.args:
            server, username, _ = self.config.get_webdav()
            password = getpass('WebDAV Password> ')
            NoteBridgeCli.__process_return(lambda: self.controller.connect_webdav(server, username, password),
                                           "Failed to connect to WebDAV server.", 4)
            return True

        if not self.config.has_credentials():
            if self.config.backend == settings.BACKEND_GIST:
                logging.critical('No GitHub token in keyring. Use --github-token to be prompted for a token.')
            else:
                logging.critical('WebDAV server, username or password missing. Use --webdav-server, --webdav-username '
                                 'and --webdav-password to specify them.')
            sys.exit(3)
        return True

    def export_data(self) -> None:
        path = Path(self.args.export)
        with open(path, 'w', encoding='utf-8') as fp:
            fp.write(self.store.export_data())
        logging.info('Notes exported to {}'.format(path))

    def import_data(self) -> None:
        path = Path(self.args.import_file)
        if not path.exists():
            logging.critical('Backup file {} not found.'.format(path))
            sys.exit(8)
        with open(path, encoding='utf-8') as fp:
            content = fp.read()
        if not self.store.import_data(content):
            logging.critical('Backup file {} could not be imported.'.format(path))
            sys.exit(8)
        logging.info('Notes imported from {}'.format(path))

    def show_size_info(self) -> None:
        info = self.controller.size_info()
        logging.info('{0} note(s), {1} custom tag(s), {2} KB ({3}% of capacity).'.format(
            info['notes_count'], info['tags_count'], info['kb'], info['percentage']))
        last_sync = self.controller.last_sync_time()
        logging.info('Last synchronised: {}'.format(last_sync if last_sync else 'never'))

    def autosync(self, minutes: int) -> None:
        """
        Uploads every ``minutes`` until interrupted.

        :param minutes: the autosync interval.
        """
        NoteBridgeCli.__process_return(lambda: self.controller.set_sync_interval(minutes),
                                       "Invalid autosync interval.", 9)
        if not self.controller.set_autosync_enabled(True):
            logging.critical('Could not start automatic synchronisation.')
            sys.exit(9)
        logging.info('Automatic synchronisation running, press Ctrl+C to stop.')
        try:
            while self.controller.scheduler.is_running:
                time.sleep(1)
        except KeyboardInterrupt:
            logging.info('Stopping automatic synchronisation.')
        finally:
            self.controller.stop_autosync()

    def setup_logging(self) -> logging.Logger:
        """
        Sets up the logging system.

        :return: the logging helper for the CLI.
        """
        if 'log_dir' in self.args:
            if os.access(self.args.log_dir, os.W_OK | os.X_OK):
                log_folder = self.args.log_dir
            else:
                print("Specified log directory {} is not accessible.".format(self.args.log_dir))
                sys.exit(1)
        else:
            log_folder = helpers.LOG_LOCATION
        return helpers.setup_logging(self.args.log_level, log_folder=log_folder)


def parse_args(argv=None) -> argparse.Namespace:
    """
    Defines arguments accepted by the CLI.
    """

    parser = argparse.ArgumentParser(
        prog="NoteBridge CLI",
        description="Back up your notes to a WebDAV server or a private GitHub Gist - and keep them in sync!",
    )

    # Actions
    parser.add_argument(
        "--upload",
        default=argparse.SUPPRESS,
        action='store_true',
        help="replace the remote copy with the local notes.")
    parser.add_argument(
        "--download",
        default=argparse.SUPPRESS,
        action='store_true',
        help="merge the remote copy into the local notes.")
    parser.add_argument(
        "--sync",
        default=argparse.SUPPRESS,
        action='store_true',
        help="download and merge the remote copy, then upload the result.")
    parser.add_argument(
        "--test-connection",
        default=argparse.SUPPRESS,
        action='store_true',
        help="check that the remote store is reachable.")
    parser.add_argument(
        "--size-info",
        default=argparse.SUPPRESS,
        action='store_true',
        help="show how much of the remote store's capacity the notes use.")
    parser.add_argument(
        "--autosync",
        type=int,
        metavar='MINUTES',
        default=argparse.SUPPRESS,
        help="upload the notes every MINUTES until interrupted.")
    parser.add_argument(
        "--export",
        type=pathlib.Path,
        metavar='FILE',
        default=argparse.SUPPRESS,
        help="export notes and custom tags to a backup file.")
    parser.add_argument(
        "--import",
        dest='import_file',
        type=pathlib.Path,
        metavar='FILE',
        default=argparse.SUPPRESS,
        help="replace notes and custom tags with the content of a backup file.")
    parser.add_argument(
        "--disconnect",
        default=argparse.SUPPRESS,
        action='store_true',
        help="stop synchronising and forget the saved credentials.")

    # Remote store options
    parser.add_argument(
        "--backend",
        type=str,
        choices=[settings.BACKEND_WEBDAV, settings.BACKEND_GIST],
        default=argparse.SUPPRESS,
        help="select the remote store.")
    parser.add_argument(
        "--webdav-server",
        type=str,
        default=argparse.SUPPRESS,
        help="specify the URL of the WebDAV folder.")
    parser.add_argument(
        "--webdav-username",
        type=str,
        default=argparse.SUPPRESS,
        help="specify username for the WebDAV server.")
    parser.add_argument(
        "--webdav-password",
        default=argparse.SUPPRESS,
        action='store_true',
        help="prompt for WebDAV password.")
    parser.add_argument(
        "--github-token",
        default=argparse.SUPPRESS,
        action='store_true',
        help="prompt for a GitHub token.")

    # Cli-specific options
    parser.add_argument(
        "--config",
        type=pathlib.Path,
        default=argparse.SUPPRESS,
        help="use to provide a path to a custom configuration file.")
    parser.add_argument(
        "--log-dir",
        type=pathlib.Path,
        default=argparse.SUPPRESS,
        help="specify a custom directory to use for logging.")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=['debug', 'info', 'critical', 'warning'],
        default='info',
        help="specify the logging level.")

    return parser.parse_args(argv)


def main():
    NoteBridgeCli(parse_args())


if __name__ == "__main__":
    main()
