from typing import Optional


class AuditorError(Exception):
    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class ConfigurationError(AuditorError):
    pass


class ProbeError(AuditorError):
    """Per-target connection or protocol failure. Never escapes a worker."""


class PersistenceError(AuditorError):
    pass


class ExternalServiceError(AuditorError):
    def __init__(self, message: str, *, operation: Optional[str] = None, backend: Optional[str] = None) -> None:
        super().__init__(message, operation=operation)
        self.backend = backend


__all__ = [
    "AuditorError",
    "ConfigurationError",
    "ProbeError",
    "PersistenceError",
    "ExternalServiceError",
]
