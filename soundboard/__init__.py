"""Plugin Soundboard: upload, transcode and push short audio clips to game plugins.

Quickstart::

    python -m soundboard.server
    # or
    uvicorn soundboard.server:app --host 0.0.0.0 --port 3001

Browser clients use the ``/sounds`` HTTP routes; in-game plugins connect to
the ``/ws/plugin`` WebSocket, authenticate with their SteamID64 and request
sound metadata or audio bytes.
"""

__version__ = "1.0.0"
