"""
Error taxonomy for the scoring engine.

- ConfigurationError: fatal, never retried (missing secrets, missing AI config,
  unsupported platform).
- ContentFetchError: content source unreachable / non-2xx / timeout.
- ValidationError: LLM payload failed schema validation (flat and nested).
- PersistenceError: delete-then-insert failure; `stage` tells which half failed.
"""
from __future__ import annotations


class SignalEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(SignalEngineError):
    pass


class ContentFetchError(SignalEngineError):
    pass


class ValidationError(SignalEngineError):
    def __init__(self, message: str, *, raw_payload: str | None = None):
        super().__init__(message)
        self.raw_payload = raw_payload


class PersistenceError(SignalEngineError):
    def __init__(self, message: str, *, stage: str):
        super().__init__(message)
        self.stage = stage
