"""
Contains the ``LocalStore`` class, which persists notes, custom tags, tag colours, drafts and the automatic backup in
SQLite. Every collection is stored and replaced as a whole; callers which modify a collection must read it, change it
and write it back.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import List

from decouple import config

from notebridge import helpers
from notebridge.helpers import DateUtil
from notebridge.notes.model.note import Note, CustomTag
from notebridge.notes.model.snapshot import SNAPSHOT_VERSION
from notebridge.sync.errors import LocalPersistenceFailure


class LocalStore:
    """
    Key-value persistence for the local copy of the user's notes.
    """

    NOTES_KEY: str = 'notes'
    CUSTOM_TAGS_KEY: str = 'custom_tags'
    TAG_COLORS_KEY: str = 'tag_colors'
    DRAFT_KEY: str = 'draft'
    BACKUP_KEY: str = 'backup'

    def __init__(self, db_path: Path | None = None, max_bytes: int | None = None):
        """
        Open (and if needed create) the local store.

        :param db_path: path to the SQLite database. Defaults to ``NoteBridge.db`` in the application data folder.
        :param max_bytes: capacity of the store in bytes; writes which would exceed it are rejected. 0 means unbounded.
        """
        self.db_path: Path = Path(db_path) if db_path is not None else helpers.db_folder()
        self.max_bytes: int = max_bytes if max_bytes is not None else config('NOTEBRIDGE_STORE_MAX_BYTES', default=0,
                                                                              cast=int)
        self.seed_store_table()

    def seed_store_table(self) -> None:
        """
        Creates the table holding all collections in SQLite.
        """
        try:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    sql_create_store_table = """CREATE TABLE IF NOT EXISTS nb_store (
                                    key TEXT PRIMARY KEY,
                                    value TEXT NOT NULL
                                    );"""
                    cursor.execute(sql_create_store_table)
                    connection.commit()
        except sqlite3.Error as e:
            raise LocalPersistenceFailure('Could not open local store {0}: {1}'.format(self.db_path, repr(e)))

    def _read(self, key: str, default=None):
        try:
            with closing(sqlite3.connect(self.db_path)) as connection:
                connection.row_factory = sqlite3.Row
                with closing(connection.cursor()) as cursor:
                    row = cursor.execute("SELECT value FROM nb_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            logging.critical('Failed to read {0} from local store: {1}'.format(key, repr(e)))
            return default
        if row is None:
            return default
        try:
            return json.loads(row['value'])
        except json.JSONDecodeError:
            logging.critical('Local store entry {} is corrupt and was ignored.'.format(key))
            return default

    def _write(self, key: str, value) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        try:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    if self.max_bytes:
                        sql_size = "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) FROM nb_store WHERE key != ?"
                        used = cursor.execute(sql_size, (key,)).fetchone()[0]
                        needed = used + len(payload.encode('utf-8'))
                        if needed > self.max_bytes:
                            raise LocalPersistenceFailure(
                                'Local store is full: saving {0} needs {1} bytes, capacity is {2} bytes.'.format(
                                    key, needed, self.max_bytes))
                    sql_upsert = "INSERT OR REPLACE INTO nb_store(key, value) VALUES (?, ?)"
                    cursor.execute(sql_upsert, (key, payload))
                    connection.commit()
        except sqlite3.Error as e:
            raise LocalPersistenceFailure('Failed to save {0}: {1}'.format(key, repr(e)))

    def _delete(self, key: str) -> None:
        try:
            with closing(sqlite3.connect(self.db_path)) as connection:
                with closing(connection.cursor()) as cursor:
                    cursor.execute("DELETE FROM nb_store WHERE key = ?", (key,))
                    connection.commit()
        except sqlite3.Error as e:
            raise LocalPersistenceFailure('Failed to delete {0}: {1}'.format(key, repr(e)))

    # Notes ------------------------------------------------------------------------------------------------------------

    def get_notes(self) -> List[Note]:
        notes = []
        for data in self._read(LocalStore.NOTES_KEY, []):
            try:
                notes.append(Note.from_dict(data))
            except (ValueError, TypeError, KeyError) as e:
                logging.warning('Skipping unreadable local note: {}'.format(e))
        return notes

    def save_notes(self, notes: List[Note]) -> None:
        """
        Replaces all notes, then refreshes the automatic backup.

        :param notes: the complete list of notes.
        """
        self._write(LocalStore.NOTES_KEY, [note.to_dict() for note in notes])
        self.create_backup(notes)

    def add_note(self, content: str) -> Note:
        """
        Creates a note and stores it in front of all other notes.

        :param content: the content of the note.
        :return: the new note.
        """
        content = (content or '').strip()
        if not content:
            raise ValueError('Cannot create an empty note.')
        note = Note(content)
        notes = self.get_notes()
        notes.insert(0, note)
        self.save_notes(notes)
        logging.debug('Note {} created.'.format(note.id))
        return note

    def update_note(self, note_id: str, content: str) -> bool:
        """
        Replaces a note's content.

        :param note_id: the note to update.
        :param content: the new content.
        :return: True if the note was found and updated.
        """
        notes = self.get_notes()
        note = next((n for n in notes if n.id == note_id), None)
        if note is None:
            return False
        note.edit(content)
        self.save_notes(notes)
        return True

    def delete_note(self, note_id: str) -> bool:
        notes = self.get_notes()
        remaining = [n for n in notes if n.id != note_id]
        if len(remaining) == len(notes):
            return False
        self.save_notes(remaining)
        return True

    # Custom Tags ------------------------------------------------------------------------------------------------------

    def get_custom_tags(self) -> List[CustomTag]:
        tags = []
        for data in self._read(LocalStore.CUSTOM_TAGS_KEY, []):
            try:
                tags.append(CustomTag.from_dict(data))
            except (ValueError, TypeError, KeyError) as e:
                logging.warning('Skipping unreadable custom tag: {}'.format(e))
        return tags

    def save_custom_tags(self, tags: List[CustomTag]) -> None:
        self._write(LocalStore.CUSTOM_TAGS_KEY, [tag.to_dict() for tag in tags])

    def add_custom_tag(self, name: str) -> bool:
        """
        Adds a custom tag in front of the existing ones.

        :param name: the tag name, with or without the leading ``#``.
        :return: False if a tag with this name already exists.
        """
        tag = CustomTag(name)
        tags = self.get_custom_tags()
        if any(t.name == tag.name for t in tags):
            return False
        tags.insert(0, tag)
        self.save_custom_tags(tags)
        return True

    def delete_custom_tag(self, tag_id: str) -> None:
        tags = self.get_custom_tags()
        self.save_custom_tags([t for t in tags if t.id != tag_id])

    # Tag Colours ------------------------------------------------------------------------------------------------------

    def get_tag_colors(self) -> dict:
        return self._read(LocalStore.TAG_COLORS_KEY, {})

    def save_tag_colors(self, colors: dict) -> None:
        self._write(LocalStore.TAG_COLORS_KEY, colors)

    def save_tag_color(self, tag_name: str, color_index: int) -> None:
        """
        Stores the colour the user picked for a tag.

        :param tag_name: the tag.
        :param color_index: a palette index between 0 and 7.
        """
        if not 0 <= int(color_index) < helpers.PALETTE_SIZE:
            raise ValueError('Colour index must be between 0 and {}.'.format(helpers.PALETTE_SIZE - 1))
        colors = self.get_tag_colors()
        colors[tag_name] = int(color_index)
        self.save_tag_colors(colors)

    def get_tag_color(self, tag_name: str) -> int:
        """
        :param tag_name: the tag.
        :return: the colour chosen for this tag, or its default colour if none was chosen.
        """
        colors = self.get_tag_colors()
        if tag_name in colors:
            return colors[tag_name]
        return helpers.default_tag_color(tag_name)

    # Drafts -----------------------------------------------------------------------------------------------------------

    def save_draft(self, content: str) -> None:
        try:
            self._write(LocalStore.DRAFT_KEY, {'content': content, 'savedAt': DateUtil.now_iso()})
        except LocalPersistenceFailure as e:
            logging.critical('Failed to save draft: {}'.format(e))

    def get_draft(self) -> dict | None:
        return self._read(LocalStore.DRAFT_KEY)

    def clear_draft(self) -> None:
        self._delete(LocalStore.DRAFT_KEY)

    # Backup, Export & Import ------------------------------------------------------------------------------------------

    def create_backup(self, notes: List[Note]) -> None:
        """
        Records a backup of the given notes together with the current custom tags. Failures are logged only.

        :param notes: the notes to back up.
        """
        backup = {
            'notes': [note.to_dict() for note in notes],
            'customTags': [tag.to_dict() for tag in self.get_custom_tags()],
            'timestamp': DateUtil.now_iso()
        }
        try:
            self._write(LocalStore.BACKUP_KEY, backup)
        except LocalPersistenceFailure as e:
            logging.critical('Failed to create backup: {}'.format(e))

    def get_backup(self) -> dict | None:
        return self._read(LocalStore.BACKUP_KEY)

    def export_data(self) -> str:
        """
        :return: all notes and custom tags as pretty-printed JSON, suitable for saving to a backup file.
        """
        data = {
            'notes': [note.to_dict() for note in self.get_notes()],
            'customTags': [tag.to_dict() for tag in self.get_custom_tags()],
            'exportTime': DateUtil.now_iso(),
            'version': SNAPSHOT_VERSION
        }
        return helpers.to_json(data)

    def import_data(self, json_string: str) -> bool:
        """
        Replaces notes and custom tags with the content of a backup produced by :py:meth:`export_data`.

        :param json_string: the backup.
        :return: True if the backup was imported.
        """
        try:
            data = json.loads(json_string)
            notes = data.get('notes')
            custom_tags = data.get('customTags')
            parsed_notes = [Note.from_dict(n) for n in notes] if isinstance(notes, list) else None
            parsed_tags = [CustomTag.from_dict(t) for t in custom_tags] if isinstance(custom_tags, list) else None
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logging.critical('Failed to import data: {}'.format(repr(e)))
            return False
        if parsed_notes is not None:
            self.save_notes(parsed_notes)
        if parsed_tags is not None:
            self.save_custom_tags(parsed_tags)
        return True
