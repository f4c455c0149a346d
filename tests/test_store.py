import json
import sqlite3
from contextlib import closing

import pytest

from notebridge import helpers
from notebridge.notes.model.note import Note, CustomTag
from notebridge.notes.store import LocalStore
from notebridge.sync.errors import LocalPersistenceFailure


class TestLocalStore:

    @staticmethod
    def _store(tmp_path, max_bytes=0) -> LocalStore:
        return LocalStore(tmp_path / 'NoteBridge.db', max_bytes=max_bytes)

    def test_seed_store_table(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        with closing(sqlite3.connect(store.db_path)) as connection:
            with closing(connection.cursor()) as cursor:
                tables = cursor.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        assert ('nb_store',) in tables

    def test_empty_store(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        assert store.get_notes() == []
        assert store.get_custom_tags() == []
        assert store.get_tag_colors() == {}
        assert store.get_draft() is None

    def test_add_note(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        first = store.add_note('First')
        second = store.add_note('  Second #tag  ')
        notes = store.get_notes()
        assert [n.id for n in notes] == [second.id, first.id]
        assert notes[0].content == 'Second #tag'
        assert notes[0].tags == ['#tag']

        with pytest.raises(ValueError):
            store.add_note('   ')

    def test_update_note(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        note = store.add_note('Before')
        assert store.update_note(note.id, 'After') is True
        updated = store.get_notes()[0]
        assert updated.content == 'After'
        assert updated.updated_at >= note.updated_at
        assert store.update_note('missing', 'x') is False

    def test_delete_note(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        note = store.add_note('Doomed')
        assert store.delete_note('missing') is False
        assert store.delete_note(note.id) is True
        assert store.get_notes() == []

    def test_save_notes_creates_backup(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        store.add_custom_tag('kept')
        store.save_notes([Note('a', note_id='1')])
        backup = store.get_backup()
        assert [n['id'] for n in backup['notes']] == ['1']
        assert [t['name'] for t in backup['customTags']] == ['#kept']
        assert 'timestamp' in backup

    def test_custom_tags(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        assert store.add_custom_tag('work') is True
        assert store.add_custom_tag('#work') is False
        assert store.add_custom_tag('home') is True
        tags = store.get_custom_tags()
        assert [t.name for t in tags] == ['#home', '#work']
        store.delete_custom_tag(tags[0].id)
        assert [t.name for t in store.get_custom_tags()] == ['#work']

    def test_tag_colors(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        assert store.get_tag_color('#work') == helpers.default_tag_color('#work')
        store.save_tag_color('#work', 5)
        assert store.get_tag_color('#work') == 5
        assert store.get_tag_colors() == {'#work': 5}
        with pytest.raises(ValueError):
            store.save_tag_color('#work', 8)

    def test_drafts(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        store.save_draft('half a thought')
        assert store.get_draft()['content'] == 'half a thought'
        store.clear_draft()
        assert store.get_draft() is None

    def test_export_import(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        store.save_notes([Note('a #x', note_id='1'), Note('b', note_id='2')])
        store.save_custom_tags([CustomTag('x', tag_id='3')])
        exported = store.export_data()
        data = json.loads(exported)
        assert [n['id'] for n in data['notes']] == ['1', '2']
        assert 'exportTime' in data

        other = LocalStore(tmp_path / 'other.db', max_bytes=0)
        assert other.import_data(exported) is True
        assert [n.id for n in other.get_notes()] == ['1', '2']
        assert [t.name for t in other.get_custom_tags()] == ['#x']

    def test_import_invalid(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        store.save_notes([Note('keep me', note_id='1')])
        assert store.import_data('not json') is False
        assert store.import_data(json.dumps({'notes': [{'content': 'no id'}]})) is False
        assert [n.id for n in store.get_notes()] == ['1']

    def test_capacity(self, tmp_path):
        store = TestLocalStore._store(tmp_path, max_bytes=200)
        with pytest.raises(LocalPersistenceFailure) as e:
            store.save_notes([Note('x' * 500, note_id='1')])
        assert 'export a backup' in e.value.message
        assert e.value.kind == 'local_persistence'
        assert store.get_notes() == []

    def test_draft_failure_is_logged(self, tmp_path):
        store = TestLocalStore._store(tmp_path, max_bytes=10)
        store.save_draft('x' * 100)
        assert store.get_draft() is None

    def test_corrupt_entry(self, tmp_path):
        store = TestLocalStore._store(tmp_path)
        with closing(sqlite3.connect(store.db_path)) as connection:
            with closing(connection.cursor()) as cursor:
                cursor.execute("INSERT INTO nb_store(key, value) VALUES ('notes', '{broken')")
                connection.commit()
        assert store.get_notes() == []
