from __future__ import annotations

from uuid import uuid4


def new_correlation_id(prefix: str = "SYNC") -> str:
    """Short id shared by every log line of one batch.

    Format: `{prefix}-{8 hex chars}`, e.g. `SYNC-1a2b3c4d`.
    """
    return f"{prefix}-{uuid4().hex[:8]}"
