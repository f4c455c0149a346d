"""
This is the note-keeping part of NoteBridge. Here, you'll find the following:

- ``model`` - the ``Note``, ``CustomTag``, ``Snapshot`` and ``Shard`` classes.
- ``store.py`` - Contains the ``LocalStore`` class which persists notes and everything around them in SQLite.

"""
