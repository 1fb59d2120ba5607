"""Named environment catalogue."""

from alpack.registry.registry import EnvironmentRegistry, validate_environment_name

__all__ = ["EnvironmentRegistry", "validate_environment_name"]
