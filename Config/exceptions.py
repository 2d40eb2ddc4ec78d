# Config/exceptions.py
"""
Configuration faults for the fuel ledger.

Raised while CentralConfig reads the environment, before any ledger work
starts, so a bad tolerance or a missing database URL stops a run up front.
"""

from typing import Optional, Any


class ConfigError(Exception):
    """Base exception for all configuration errors."""
    pass


class ConfigValidationError(ConfigError):
    """A variable is present but its value cannot be used."""

    def __init__(self, key: str, value: Any, reason: str, suggestion: Optional[str] = None):
        self.key = key
        self.value = value
        self.reason = reason
        self.suggestion = suggestion

        lines = [f"Invalid ledger setting {key}={value!r}", f"  Reason: {reason}"]
        if suggestion:
            lines.append(f"  Suggestion: {suggestion}")
        super().__init__("\n".join(lines))


class ConfigRangeError(ConfigValidationError):
    """A numeric setting (usually a tolerance) falls outside its allowed bounds."""

    def __init__(self, key: str, value: Any, min_val: Optional[Any], max_val: Optional[Any]):
        self.min_val = min_val
        self.max_val = max_val

        if min_val is not None and max_val is not None:
            reason = f"Must be between {min_val} and {max_val}"
        elif min_val is not None:
            reason = f"Must be >= {min_val}"
        else:
            reason = f"Must be <= {max_val}"

        nearest = min_val if min_val is not None and value < min_val else max_val
        super().__init__(key, value, reason, f"Use {key}={nearest}")


class ConfigMissingError(ConfigError):
    """A required setting was found in neither the process environment nor the .env file."""

    def __init__(self, key: str, location: str):
        self.key = key
        self.location = location
        super().__init__(f"Ledger setting {key} is not set (looked in: {location})")
