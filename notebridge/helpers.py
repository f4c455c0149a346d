"""
This is a helper file shared by the note model, the local store and the sync subsystem.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from decouple import config

DATA_LOCATION: Path = Path(config('NOTEBRIDGE_HOME', default=str(Path.home() / ".notebridge")))  #: Location where
# application data is stored.
LOG_LOCATION: Path = DATA_LOCATION / "logs"  #: Default location of log files.

#: Matches a tag inside note content, e.g. ``#reading`` or ``#读书``.
TAG_PATTERN = re.compile(r'#[\u4e00-\u9fa5a-zA-Z0-9_]+')

#: Number of colours in the tag palette.
PALETTE_SIZE: int = 8

_id_lock = threading.Lock()
_last_id: int = 0


def new_id() -> str:
    """
    Generates a time-based identifier: the number of milliseconds since the epoch. Identifiers issued by this process
    are strictly increasing, so two notes created within the same millisecond still get distinct ids.

    :return: the identifier as a string.
    """
    global _last_id
    with _id_lock:
        candidate = int(time.time() * 1000)
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
        return str(candidate)


def extract_tags(content: str) -> list[str]:
    """
    Extracts the tags used in a note's content.

    :param content: the note content.
    :return: unique tags in order of first appearance.
    """
    return list(dict.fromkeys(TAG_PATTERN.findall(content or '')))


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def default_tag_color(tag_name: str) -> int:
    """
    Derives a palette index for a tag that has no colour chosen by the user. The same tag always maps to the same
    colour, across devices and sessions.

    :param tag_name: the tag, including its ``#`` marker.
    :return: a palette index between 0 and 7.
    """
    h = 0
    units = tag_name.encode('utf-16-le')
    for i in range(0, len(units), 2):
        code = int.from_bytes(units[i:i + 2], 'little')
        h = code + (_to_int32(_to_int32(h) << 5) - h)
    return abs(h) % PALETTE_SIZE


def to_json(data: dict) -> str:
    """
    Serializes a payload the way it is sent to remote stores.

    :param data: the payload.
    :return: pretty-printed JSON.
    """
    return json.dumps(data, indent=2, ensure_ascii=False)


def json_size(data: dict) -> int:
    """
    :param data: the payload.
    :return: size in bytes of the UTF-8 encoded payload as produced by :py:func:`to_json`.
    """
    return len(to_json(data).encode('utf-8'))


def settings_folder() -> Path:
    """
    Get the location of the Application Data folder for NoteBridge.

    :return: path to the Application Data folder.
    """
    folder = DATA_LOCATION
    folder.mkdir(parents=True, exist_ok=True)
    return folder


def db_folder() -> Path:
    """
    Get the location of the SQLite database file holding local notes.

    :return: path to the SQLite database file.
    """
    return settings_folder() / "NoteBridge.db"


class DateUtil:
    """
    Utility class for handling the ISO 8601 timestamps stored on notes and snapshots.
    """

    ISO_DATETIME = "%Y-%m-%dT%H:%M:%S"
    EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

    @staticmethod
    def now_iso() -> str:
        """
        :return: the current UTC time in the same format browsers produce, e.g. ``2024-05-01T10:00:00.123Z``.
        """
        return DateUtil.to_iso(datetime.now(timezone.utc))

    @staticmethod
    def to_iso(obj: datetime) -> str:
        """
        Formats a datetime as a UTC ISO string with millisecond precision and a ``Z`` suffix. Naive datetimes are
        assumed to be UTC.
        """
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        obj = obj.astimezone(timezone.utc)
        return obj.strftime(DateUtil.ISO_DATETIME) + '.{:03d}Z'.format(obj.microsecond // 1000)

    @staticmethod
    def parse(value: str | datetime | None) -> datetime:
        """
        Parses a timestamp into an aware datetime. Values that cannot be parsed sort before everything else.

        :param value: an ISO 8601 string, a datetime or None.
        :return: the parsed datetime, or the epoch if it could not be parsed.
        """
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        if not value:
            return DateUtil.EPOCH
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return DateUtil.EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class FunctionHandler(logging.Handler):
    def __init__(self, func: Callable):
        logging.Handler.__init__(self)
        self.func = func

    def emit(self, record):
        msg = self.format(record)
        self.func(msg)


def setup_logging(logging_level: str = 'info',
                  log_stdout: bool = False,
                  log_folder: Path | None = LOG_LOCATION,
                  func: Callable | None = None) -> logging.Logger:
    """
    Sets up the logging system.

    :param logging_level: the logging level which can be `debug`, `info`, `warning` or `critical`.
    :param log_stdout: if True, logs are sent to standard out.
    :param log_folder: folder where a timestamped log file is created. No log file is written if None.
    :param func: if given, every formatted log line is passed to this function (e.g. to display it in a UI).

    :return: the root logger.
    """
    log_levels = {
        'debug': logging.DEBUG,
        'info': logging.INFO,
        'warning': logging.WARNING,
        'critical': logging.CRITICAL
    }
    log_level = log_levels[logging_level]

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s %(levelname)s: %(message)s',
    )
    logger = logging.getLogger()
    logger.setLevel(log_level)
    if log_folder is not None:
        log_folder = Path(log_folder)
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = datetime.now().strftime("NoteBridge_%Y%m%d-%H%M%S") + '.log'
        logger.addHandler(logging.FileHandler(log_folder / log_file))
    if log_stdout:
        logger.addHandler(logging.StreamHandler(sys.stdout))
    if func is not None:
        logger.addHandler(FunctionHandler(func))
    return logger
