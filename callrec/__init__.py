"""Call Recording Ingest - Core application modules.

Provides:
- Configuration constants with environment overrides
- SQLAlchemy models and DB primitives for users, leads and call logs
- Pydantic request/response models
- Core utilities: atomic_io, hashing, paths, media, failpoints
"""

__version__ = "0.1.0"
