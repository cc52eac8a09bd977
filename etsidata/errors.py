from __future__ import annotations

from typing import Optional


class EtsidataError(Exception):
    """Base class for errors raised by the ingest and streaming code."""


class SchemaError(EtsidataError):
    """The summary/sidecar pair cannot be turned into a dataset schema."""


class DatabaseError(EtsidataError):
    """A TSDB call failed or timed out."""

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(message)
        self.sql = sql


class ParseError(EtsidataError):
    """A source cell (time or number) could not be parsed."""


class ProtocolError(EtsidataError):
    """A client frame or one of its parameters is malformed."""
