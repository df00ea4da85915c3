"""Collaborator interfaces for object and record storage."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

Row = dict[str, Any]


class ObjectStore(Protocol):
    """Bucketed blob storage."""

    def store(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> str:
        """Persist bytes and return the stored path."""

    def fetch(self, bucket: str, path: str) -> bytes:
        """Read stored bytes."""

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        """Return a time-limited URL for a stored object."""

    def get_public_url(self, bucket: str, path: str) -> str:
        """Return the non-expiring URL for a stored object."""

    def remove(self, bucket: str, paths: list[str]) -> None:
        """Delete stored objects; missing paths are ignored."""


class RecordStore(Protocol):
    """Table-oriented record storage."""

    def select(self, table: str, filters: Mapping[str, Any] | None = None) -> list[Row]:
        """Return rows whose columns equal every filter value."""

    def get(self, table: str, record_id: str) -> Row:
        """Return one row by id or raise RecordNotFoundError."""

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        """Insert a row (an id is generated when missing) and return it."""

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> Row:
        """Merge patch into an existing row and return the updated row."""

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a row and report whether it existed."""

    def query_columns(self, table: str) -> list[Row]:
        """Return the column catalog: dicts with name, type, nullable, default."""
