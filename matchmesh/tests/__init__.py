"""
Tests Module: Unit and Integration Tests

Test Coverage:
    - Pending request table (slot claims, stale tokens)
    - Orchestrator (operations, completions, destroy-then-create, timeouts)
    - Lobby (host/join affordances, travel)
    - LAN backend (end-to-end over the in-process registry)
    - Redis backend (mocked client)
    - Configuration, errors, events and metrics
"""
