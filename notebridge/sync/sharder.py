"""
Splits a snapshot's notes into shards small enough for a remote store's per-object size limit.

Notes are ordered newest first before packing, so shard 0 always holds the most recent notes. Packing is greedy and
deterministic: the same notes always produce the same shards.
"""

from __future__ import annotations

from typing import List

from notebridge import helpers
from notebridge.notes.model.note import Note
from notebridge.notes.model.snapshot import Snapshot, Shard

#: Indentation added to every line of a note when it sits inside a snapshot's ``notes`` list.
NESTED_INDENT: int = 4
#: Bytes separating consecutive notes in the list (``,`` and a newline).
SEPARATOR_BYTES: int = 2


def order_notes(notes: List[Note]) -> List[Note]:
    """
    :param notes: the notes to order.
    :return: the notes, newest first.
    """
    return sorted(notes, key=Note.sort_key, reverse=True)


def note_size(note: Note) -> int:
    """
    Estimates the number of bytes a note adds to a serialized snapshot.

    :param note: the note.
    :return: the estimated size in bytes.
    """
    text = helpers.to_json(note.to_dict())
    lines = text.count('\n') + 1
    return len(text.encode('utf-8')) + NESTED_INDENT * lines + SEPARATOR_BYTES


def snapshot_overhead(snapshot: Snapshot) -> int:
    """
    Estimates the size of a shard of ``snapshot`` which holds no notes at all.

    :param snapshot: the snapshot being sharded.
    :return: the estimated size in bytes.
    """
    empty = Shard(index=0, total=0, notes=[], custom_tags=snapshot.custom_tags, tag_colors=snapshot.tag_colors,
                  sync_time=snapshot.sync_time, version=snapshot.version)
    # Leave room for multi-digit shard indexes.
    return helpers.json_size(empty.to_dict()) + 8


def shard(notes: List[Note], base_overhead: int, max_shard_bytes: int, template: Snapshot | None = None) -> List[Shard]:
    """
    Packs notes into shards.

    Notes are taken newest first. A note is added to the current shard unless that would take the shard over
    ``max_shard_bytes``, in which case the shard is closed and the note starts a new one. A note which is larger than
    the limit on its own is never split; it gets a shard of its own. No notes at all still yield one empty shard.

    :param notes: the notes to pack.
    :param base_overhead: estimated size of a shard without notes.
    :param max_shard_bytes: the size limit of a shard.
    :param template: snapshot whose custom tags, tag colours, sync time and version are copied into every shard.

    :return: the shards, in order. Every shard knows its index and the total number of shards.
    """
    template = template or Snapshot()
    groups: List[List[Note]] = [[]]
    current_size = base_overhead
    for note in order_notes(notes):
        size = note_size(note)
        if groups[-1] and current_size + size > max_shard_bytes:
            groups.append([])
            current_size = base_overhead
        groups[-1].append(note)
        current_size += size

    return [Shard(index=index,
                  total=len(groups),
                  notes=group,
                  custom_tags=template.custom_tags,
                  tag_colors=template.tag_colors,
                  sync_time=template.sync_time,
                  version=template.version)
            for index, group in enumerate(groups)]


def shard_snapshot(snapshot: Snapshot, max_shard_bytes: int) -> List[Shard]:
    """
    Splits a snapshot into shards.

    :param snapshot: the snapshot to split.
    :param max_shard_bytes: the size limit of a shard.
    :return: the shards, in order.
    """
    return shard(snapshot.notes, snapshot_overhead(snapshot), max_shard_bytes, snapshot)
