"""Game-plugin gateway: the ``/ws/plugin`` socket and its session registry.

  registry  - one live connection per identity, displacement on re-auth
  protocol  - per-connection state machine as pure transition functions
  handler   - drives a FastAPI WebSocket through the state machine
  notifier  - fire-and-forget ``sounds_updated`` pushes after mutations
"""
