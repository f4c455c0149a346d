"""
This is the model of NoteBridge. Here, you'll find the following:

- ``note.py`` - Contains the ``Note`` and ``CustomTag`` classes that represent a note and a user-defined tag
  respectively.
- ``snapshot.py`` - Contains the ``Snapshot`` and ``Shard`` classes which represent the whole of the synchronised state,
  or a size-bounded part of it.

"""

from . import note, snapshot

__all__ = ['note', 'snapshot', ]
