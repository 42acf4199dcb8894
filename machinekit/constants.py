"""Shared constants for drivers.

Centralizes timeout values, intervals, and other magic numbers
to ensure consistency across driver implementations.
"""

from __future__ import annotations

# =============================================================================
# Timeouts (seconds)
# =============================================================================

DEFAULT_BATCH_TIMEOUT = 60 * 60.0
"""Maximum time to create and verify a whole batch of machines."""

DEFAULT_START_TIMEOUT = 60.0
"""Maximum time for a started machine to get an address and accept SSH."""

DEFAULT_KILL_TIMEOUT = 60.0
"""Maximum time to confirm a destroyed domain has stopped."""

DEFAULT_ENGINE_TIMEOUT = 300.0
"""Maximum time to wait for the engine API to answer on a new machine."""

DEFAULT_ENGINE_REQUEST_TIMEOUT = 30.0
"""Per-request timeout for engine API clients."""

DEFAULT_SSH_CONNECT_TIMEOUT = 8.0
"""SSH connect timeout, independent of the command timeout."""

# =============================================================================
# Polling Intervals (seconds)
# =============================================================================

DEFAULT_IP_POLL_INTERVAL = 1.0
"""Interval between address lookups while a domain boots."""

DEFAULT_SSH_POLL_INTERVAL = 0.5
"""Interval between SSH reachability probes."""

DEFAULT_KILL_POLL_INTERVAL = 0.5
"""Interval between liveness checks after a forced stop."""

DEFAULT_ENGINE_POLL_INTERVAL = 2.0
"""Interval between engine API probes."""

# =============================================================================
# Ports
# =============================================================================

DEFAULT_SSH_PORT = 22
"""Default SSH port."""

DEFAULT_ENGINE_PORT = 2376
"""Default TLS port of the engine API."""

DEFAULT_SWARM_LISTEN_ADDR = "0.0.0.0:2377"
"""Default listen address passed to swarm init and join."""
