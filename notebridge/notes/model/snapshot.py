"""
Contains the ``Snapshot`` class, the unit of synchronisation, and the ``Shard`` class, a size-bounded part of a
snapshot. ``build_snapshot`` assembles a fresh snapshot from the local store.
"""

from __future__ import annotations

from typing import List, TYPE_CHECKING

from notebridge import helpers
from notebridge.helpers import DateUtil
from notebridge.notes.model.note import Note, CustomTag

if TYPE_CHECKING:
    from notebridge.notes.store import LocalStore

#: Version written into every snapshot.
SNAPSHOT_VERSION: str = '1.0'


class Snapshot:
    """
    Full exported state of notes, custom tags and tag colours at a point in time.
    """

    def __init__(self,
                 notes: List[Note] | None = None,
                 custom_tags: List[CustomTag] | None = None,
                 tag_colors: dict | None = None,
                 sync_time: str | None = None,
                 version: str = SNAPSHOT_VERSION):
        self.notes: List[Note] = notes if notes is not None else []
        self.custom_tags: List[CustomTag] | None = custom_tags
        self.tag_colors: dict | None = tag_colors
        self.sync_time: str | None = sync_time
        self.version: str = version
        #: Indexes of shards that could not be read when this snapshot was recombined from shards.
        self.missing_shards: List[int] = []

    @property
    def partial(self) -> bool:
        return len(self.missing_shards) > 0

    def to_dict(self) -> dict:
        return {
            'notes': [note.to_dict() for note in self.notes],
            'customTags': [tag.to_dict() for tag in (self.custom_tags or [])],
            'tagColors': dict(self.tag_colors or {}),
            'syncTime': self.sync_time,
            'version': self.version
        }

    def to_json(self) -> str:
        return helpers.to_json(self.to_dict())

    def size(self) -> int:
        """
        :return: the size in bytes of this snapshot once serialized.
        """
        return helpers.json_size(self.to_dict())

    @staticmethod
    def parse_fields(data: dict) -> dict:
        """
        Parses the fields shared by snapshots and shards. Collections missing from ``data`` are returned as None so
        callers can tell an absent collection from an empty one.

        :param data: the deserialized JSON object.
        :return: keyword arguments for :py:class:`Snapshot`.
        """
        if not isinstance(data, dict):
            raise ValueError('Snapshot must be a JSON object, got {}'.format(type(data).__name__))
        notes = data.get('notes')
        if notes is not None and not isinstance(notes, list):
            raise ValueError('Snapshot notes must be a list.')
        custom_tags = data.get('customTags')
        tag_colors = data.get('tagColors')
        return {
            'notes': [Note.from_dict(n) for n in (notes or [])],
            'custom_tags': [CustomTag.from_dict(t) for t in custom_tags] if isinstance(custom_tags, list) else None,
            'tag_colors': dict(tag_colors) if isinstance(tag_colors, dict) else None,
            'sync_time': data.get('syncTime'),
            'version': data.get('version', SNAPSHOT_VERSION)
        }

    @staticmethod
    def from_dict(data: dict) -> Snapshot:
        return Snapshot(**Snapshot.parse_fields(data))

    def __repr__(self):
        return 'Snapshot(notes={0}, sync_time={1!r})'.format(len(self.notes), self.sync_time)


class Shard(Snapshot):
    """
    A size-bounded part of a snapshot's notes, tagged with its position among its siblings.
    """

    def __init__(self, index: int, total: int, **kwargs):
        """
        Create a new shard.

        :param index: 0-based position of this shard.
        :param total: number of shards in the upload this shard belongs to.
        :param kwargs: snapshot fields, see :py:class:`Snapshot`.
        """
        super().__init__(**kwargs)
        self.index: int = index
        self.total: int = total

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['shardInfo'] = {'index': self.index, 'total': self.total}
        return data

    @staticmethod
    def from_dict(data: dict) -> Shard:
        fields = Snapshot.parse_fields(data)
        info = data.get('shardInfo')
        if not isinstance(info, dict) or 'index' not in info:
            raise ValueError('Shard is missing its shardInfo.')
        return Shard(index=int(info['index']), total=int(info.get('total', 0)), **fields)

    def __repr__(self):
        return 'Shard({0}/{1}, notes={2})'.format(self.index, self.total, len(self.notes))


def build_snapshot(store: LocalStore, sync_time: str | None = None) -> Snapshot:
    """
    Assembles a fresh snapshot from the local store.

    :param store: the local store.
    :param sync_time: the sync timestamp to record. Defaults to now.
    :return: the snapshot.
    """
    return Snapshot(
        notes=store.get_notes(),
        custom_tags=store.get_custom_tags(),
        tag_colors=store.get_tag_colors(),
        sync_time=sync_time or DateUtil.now_iso(),
        version=SNAPSHOT_VERSION)


def describe_size(snapshot: Snapshot, warning_bytes: int, critical_bytes: int) -> dict:
    """
    Describes the serialized size of a snapshot relative to a remote store's thresholds. The result is advisory only.

    :param snapshot: the snapshot to measure.
    :param warning_bytes: size at which the user should be warned.
    :param critical_bytes: size at which the remote store is considered full.

    :return: dictionary with the following keys:

        - ``bytes``, ``kb``, ``mb`` - the size in different units, ``kb`` and ``mb`` as formatted strings.
        - ``percentage`` - share of ``critical_bytes`` in use, as a formatted string.
        - ``notes_count``, ``tags_count`` - number of notes and custom tags.
        - ``is_warning``, ``is_critical`` - whether each threshold has been reached.

    """
    size = snapshot.size()
    return {
        'bytes': size,
        'kb': '{:.2f}'.format(size / 1024),
        'mb': '{:.3f}'.format(size / (1024 * 1024)),
        'percentage': '{:.1f}'.format(size / critical_bytes * 100) if critical_bytes else '0.0',
        'notes_count': len(snapshot.notes),
        'tags_count': len(snapshot.custom_tags or []),
        'is_warning': size >= warning_bytes,
        'is_critical': size >= critical_bytes
    }
