"""
This is the sync part of NoteBridge. Here, you'll find the following:

- ``errors.py`` - the errors raised while synchronising.
- ``sharder.py`` - splits a snapshot into shards small enough for a remote store.
- ``merger.py`` - reconciles local and remote state.
- ``backend.py`` - Contains ``RemoteBackend``, the interface of every remote store.
- ``webdav.py`` and ``gist.py`` - the WebDAV and GitHub Gist remote stores.
- ``scheduler.py`` - Contains ``SyncScheduler`` which runs automatic synchronisation.
- ``controller.py`` - Contains ``SyncController`` which carries out sync operations and reports their results.

"""
