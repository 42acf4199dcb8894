"""Machine name generation for provisioning batches."""

from __future__ import annotations

import uuid


def new_batch_id() -> str:
    """Random 32-bit batch identifier, upper-case hex."""
    return uuid.uuid4().hex[:8].upper()


def machine_name(prefix: str, batch_id: str, index: int) -> str:
    return f"{prefix}-{batch_id}-{index}"


def batch_names(prefix: str, count: int, batch_id: str | None = None) -> list[str]:
    """Derive ``count`` distinct machine names sharing one batch identifier.

    >>> batch_names("e2e", 2, batch_id="0A1B2C3D")
    ['e2e-0A1B2C3D-0', 'e2e-0A1B2C3D-1']
    """
    batch_id = batch_id or new_batch_id()
    return [machine_name(prefix, batch_id, index) for index in range(count)]
