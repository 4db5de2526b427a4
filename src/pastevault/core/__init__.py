"""
Core engine components.

This package contains the paste persistence and security pipeline:
- Identifier allocation
- Key derivation, AEAD and owner tokens
- Zstandard compression
- SQLite repository and schema migrations
- Lazy and periodic expiry
- Render cache and highlighting
- Metrics collection
"""
