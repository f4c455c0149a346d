"""
Contains the ``Note`` class, which represents a single note, and the ``CustomTag`` class, which represents a tag the
user has defined independently of any note.
"""

from __future__ import annotations

from datetime import datetime

from notebridge import helpers
from notebridge.helpers import DateUtil


class Note:
    """
    Represents a note. Notes are identified by an ``id`` which is assigned at creation and never changes. A note's tags
    are always derived from its content.
    """

    def __init__(self,
                 content: str,
                 note_id: str | None = None,
                 created_at: str | None = None,
                 updated_at: str | None = None):
        """
        Create a new note.

        :param content: the text of the note.
        :param note_id: the identifier of the note. A new time-based identifier is generated if None.
        :param created_at: ISO 8601 creation timestamp. Defaults to now.
        :param updated_at: ISO 8601 modification timestamp. Defaults to ``created_at``.
        """
        self.id: str = note_id if note_id is not None else helpers.new_id()
        self.content: str = content
        self.created_at: str = created_at or DateUtil.now_iso()
        self.updated_at: str = updated_at or self.created_at

    @property
    def tags(self) -> list[str]:
        """
        :return: the tags found in this note's content.
        """
        return helpers.extract_tags(self.content)

    @property
    def recency(self) -> datetime:
        """
        The recency marker of this note: its modification time, or its creation time if it was never modified.
        """
        return DateUtil.parse(self.updated_at or self.created_at)

    def sort_key(self) -> tuple:
        """
        Key used wherever notes are ordered by recency. Notes with equal timestamps are ordered by id so the order is
        fully deterministic.
        """
        return self.recency, self.id

    def edit(self, content: str) -> None:
        """
        Replaces the content of this note and bumps its modification time.

        :param content: the new content.
        """
        self.content = content
        self.updated_at = DateUtil.now_iso()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'content': self.content,
            'tags': self.tags,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at
        }

    @staticmethod
    def from_dict(data: dict) -> Note:
        """
        Creates a Note from its serialized form. Any ``tags`` in the data are ignored and recomputed from the content.

        :param data: dictionary with ``id``, ``content``, ``createdAt`` and ``updatedAt`` keys.
        :return: the note.
        """
        if not isinstance(data, dict) or 'id' not in data:
            raise ValueError('Note is missing its id: {}'.format(data))
        return Note(
            content=data.get('content', ''),
            note_id=str(data['id']),
            created_at=data.get('createdAt'),
            updated_at=data.get('updatedAt'))

    def __eq__(self, other):
        if not isinstance(other, Note):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.id, self.content, self.created_at, self.updated_at))

    def __repr__(self):
        return 'Note(id={0!r}, updated_at={1!r})'.format(self.id, self.updated_at)

    def __str__(self):
        first_line = self.content.splitlines()[0] if self.content else ''
        return "{0}: {1}".format(self.id, first_line[:40])


class CustomTag:
    """
    Represents a tag defined by the user. Tag names are unique and always start with ``#``.
    """

    #: Marker character every tag name starts with.
    MARKER: str = '#'

    def __init__(self, name: str, tag_id: str | None = None, created_at: str | None = None):
        """
        Create a new custom tag.

        :param name: the tag name, with or without the leading ``#``.
        :param tag_id: the identifier of the tag. A new time-based identifier is generated if None.
        :param created_at: ISO 8601 creation timestamp. Defaults to now.
        """
        self.name: str = CustomTag.normalize(name)
        self.id: str = tag_id if tag_id is not None else helpers.new_id()
        self.created_at: str = created_at or DateUtil.now_iso()

    @staticmethod
    def normalize(name: str) -> str:
        """
        Brings a tag name into its canonical form.

        :param name: the tag name as typed by the user.
        :return: the name, stripped and prefixed with ``#``.
        """
        name = (name or '').strip()
        if not name or name == CustomTag.MARKER:
            raise ValueError('Tag name must not be empty.')
        return name if name.startswith(CustomTag.MARKER) else CustomTag.MARKER + name

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'createdAt': self.created_at
        }

    @staticmethod
    def from_dict(data: dict) -> CustomTag:
        return CustomTag(name=data['name'], tag_id=str(data.get('id', '')) or None, created_at=data.get('createdAt'))

    def __eq__(self, other):
        if not isinstance(other, CustomTag):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.id, self.name, self.created_at))

    def __repr__(self):
        return 'CustomTag(name={!r})'.format(self.name)
