"""
Offline sync engine.

Queues client mutations, detects and resolves conflicts against
authoritative server state, and tracks per-device sync sessions.
"""
