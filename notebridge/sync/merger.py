"""
Reconciles local and remote state.

Notes are merged by id with last-writer-wins at whole-note granularity: when both sides hold a note with the same id,
the one with the later modification time is kept, and the local note wins ties. Custom tags are merged as a union by
name. Tag colours are taken from the remote side whenever it has any.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from notebridge.notes.model.note import Note, CustomTag
from notebridge.notes.model.snapshot import Snapshot, Shard


def _adopt(merged: Dict[str, Note], note: Note) -> None:
    existing = merged.get(note.id)
    if existing is None or note.recency > existing.recency:
        merged[note.id] = note


def merge_notes(local_notes: List[Note], remote_notes: List[Note]) -> List[Note]:
    """
    Merges two note collections.

    :param local_notes: notes from the local store. These are seen first, so they win ties.
    :param remote_notes: notes from the remote store.
    :return: one note per id, newest first.
    """
    merged: Dict[str, Note] = {}
    for note in local_notes:
        _adopt(merged, note)
    for note in remote_notes:
        _adopt(merged, note)
    return sorted(merged.values(), key=Note.sort_key, reverse=True)


def merge_custom_tags(local_tags: List[CustomTag], remote_tags: List[CustomTag] | None) -> List[CustomTag]:
    """
    Merges custom tags as a union by name. Local tags keep their order; remote tags with new names follow.

    :param local_tags: tags from the local store.
    :param remote_tags: tags from the remote store, None if the remote snapshot had none.
    :return: the merged tags.
    """
    merged = list(local_tags)
    names = {tag.name for tag in merged}
    for tag in remote_tags or []:
        if tag.name not in names:
            merged.append(tag)
            names.add(tag.name)
    return merged


def merge_tag_colors(local_colors: dict, remote_colors: dict | None) -> dict:
    """
    :param local_colors: colours from the local store.
    :param remote_colors: colours from the remote store, None if the remote snapshot had none.
    :return: the remote colours if there are any, otherwise the local ones.
    """
    if remote_colors is not None:
        return dict(remote_colors)
    return dict(local_colors)


def combine(shards: List[Shard]) -> Snapshot:
    """
    Reassembles a snapshot from shards.

    Notes are concatenated in shard order and de-duplicated. Custom tags, tag colours and sync time are taken from the
    last shard that carries them; a shard without them never erases values adopted from an earlier shard. Shards
    missing from the sequence (according to the ``total`` the shards report) are listed in ``missing_shards``.

    :param shards: the shards that could be read, in any order.
    :return: the combined snapshot.
    """
    ordered = sorted(shards, key=lambda s: s.index)
    snapshot = Snapshot()
    notes: List[Note] = []
    for shard in ordered:
        notes.extend(shard.notes)
        if shard.custom_tags is not None:
            snapshot.custom_tags = shard.custom_tags
        if shard.tag_colors is not None:
            snapshot.tag_colors = shard.tag_colors
        if shard.sync_time is not None:
            snapshot.sync_time = shard.sync_time
        snapshot.version = shard.version
    snapshot.notes = merge_notes(notes, [])

    total = max([shard.total for shard in ordered] + [len(ordered)])
    present = {shard.index for shard in ordered}
    snapshot.missing_shards = [index for index in range(total) if index not in present]
    if snapshot.missing_shards:
        logging.warning('Shards missing from remote snapshot: {}'.format(snapshot.missing_shards))
    return snapshot


def merge_snapshot(local: Snapshot, remote: Snapshot) -> Snapshot:
    """
    Merges a remote snapshot into a local one.

    :param local: the current local state.
    :param remote: the downloaded remote state.
    :return: the merged state.
    """
    merged = Snapshot(
        notes=merge_notes(local.notes, remote.notes),
        custom_tags=merge_custom_tags(local.custom_tags or [], remote.custom_tags),
        tag_colors=merge_tag_colors(local.tag_colors or {}, remote.tag_colors),
        sync_time=remote.sync_time,
        version=remote.version)
    merged.missing_shards = list(remote.missing_shards)
    return merged
