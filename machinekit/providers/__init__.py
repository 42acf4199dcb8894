"""Machine drivers."""

from machinekit.providers.registry import create_driver, get_test_machines

__all__ = ["create_driver", "get_test_machines"]
