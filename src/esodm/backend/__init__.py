"""Backend layer — Transports for the document store.

Built-in backends:
  - elasticsearch: Elasticsearch v8+ over the official async client

Implement ``SearchBackend`` to plug in another transport (the test suite
ships an in-memory one).
"""
