"""
Mobile data cache.

Per-user snapshots of server data that mobile clients read while offline.
Entries are invalidated by sync sessions when the underlying entities change.
"""
