"""Errors raised while loading marketrecon settings."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when configuration values are invalid."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values are absent or blank."""

    def __init__(self, names: list[str]) -> None:
        self.names = tuple(sorted(names))
        super().__init__(f"Missing configuration for: {', '.join(self.names)}")


class InvalidSettingError(ConfigurationError):
    """A setting or environment variable holds an unusable value."""

    def __init__(self, setting: str, value: object, requirement: str) -> None:
        self.setting = setting
        self.value = value
        super().__init__(f"{setting} {requirement}, got {value!r}")
