"""
This is the main package for NoteBridge.

- ``notes`` - the note model and the local store.
- ``sync`` - mirroring the local store to a remote store and back.
- ``cli`` - the NoteBridge command-line interface.
- ``helpers`` - helpers used throughout NoteBridge.
- ``settings`` - configuration and persisted sync state.

"""

from . import helpers

__all__ = ['helpers', ]
