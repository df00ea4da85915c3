"""Filesystem-backed object store and JSON-file record store."""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import tempfile
import threading
import time
import uuid
from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import parse_qs, quote, unquote, urlsplit

from core.storage.base import Row
from core.utils.errors import RecordNotFoundError, StorageFailure

_STORE_VERSION = 1
_SIGNED_URL_SCHEME = "trustdocs"


class LocalObjectStore:
    """Store objects as files under ``root/<bucket>/<path>``."""

    def __init__(self, root: Path, *, signing_key: bytes | None = None) -> None:
        self._root = root
        self._signing_key = signing_key or b"trustdocs-local"

    def store(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> str:
        target = self._resolve(bucket, path)
        if target.exists() and not upsert:
            raise StorageFailure(
                f"Object already exists: {bucket}/{path}", operation="store", target=path
            )

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, raw_tmp_path = tempfile.mkstemp(
                dir=target.parent, prefix=f"{target.name}.", suffix=".tmp"
            )
            os.close(fd)
            tmp_path = Path(raw_tmp_path)
            try:
                tmp_path.write_bytes(data)
                tmp_path.replace(target)
            except Exception:
                tmp_path.unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageFailure(
                f"Failed to store object {bucket}/{path}: {exc}", operation="store", target=path
            ) from exc
        return path

    def fetch(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageFailure(
                f"Failed to read object {bucket}/{path}: {exc}", operation="fetch", target=path
            ) from exc

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        if not self._resolve(bucket, path).exists():
            raise StorageFailure(
                f"Object not found: {bucket}/{path}", operation="create_signed_url", target=path
            )
        expires = int(time.time()) + int(ttl_seconds)
        signature = self._sign(bucket, path, expires)
        return (
            f"{_SIGNED_URL_SCHEME}://{quote(bucket)}/{quote(path)}"
            f"?expires={expires}&signature={signature}"
        )

    def verify_signed_url(self, url: str, *, now: float | None = None) -> tuple[str, str] | None:
        """Return (bucket, path) for a valid, unexpired signed URL."""

        parts = urlsplit(url)
        if parts.scheme != _SIGNED_URL_SCHEME:
            return None
        query = parse_qs(parts.query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, IndexError, ValueError):
            return None

        bucket = unquote(parts.netloc)
        path = unquote(parts.path.lstrip("/"))
        current = time.time() if now is None else now
        if current > expires:
            return None
        if not hmac.compare_digest(signature, self._sign(bucket, path, expires)):
            return None
        return bucket, path

    def get_public_url(self, bucket: str, path: str) -> str:
        return self._resolve(bucket, path).resolve().as_uri()

    def remove(self, bucket: str, paths: list[str]) -> None:
        for path in paths:
            try:
                self._resolve(bucket, path).unlink(missing_ok=True)
            except OSError as exc:
                raise StorageFailure(
                    f"Failed to remove object {bucket}/{path}: {exc}",
                    operation="remove",
                    target=path,
                ) from exc

    def _resolve(self, bucket: str, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not bucket or "/" in bucket:
            raise StorageFailure(f"Invalid object path: {bucket}/{path}", operation="resolve")
        return self._root / bucket / Path(*relative.parts)

    def _sign(self, bucket: str, path: str, expires: int) -> str:
        message = f"{bucket}/{path}:{expires}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()


class JsonRecordStore:
    """Persist tables of records in a single JSON file.

    The optional ``columns`` section acts as the column catalog. When a table
    has no catalog entry, ``query_columns`` fails like an unreachable catalog.
    """

    def __init__(self, store_path: Path) -> None:
        self._store_path = store_path
        self._lock = threading.Lock()

    def select(self, table: str, filters: Mapping[str, Any] | None = None) -> list[Row]:
        with self._lock:
            data = self._read_data()
        rows = data["tables"].get(table, {})
        criteria = dict(filters or {})
        return [
            dict(rows[key])
            for key in sorted(rows)
            if all(rows[key].get(column) == value for column, value in criteria.items())
        ]

    def get(self, table: str, record_id: str) -> Row:
        with self._lock:
            data = self._read_data()
        row = data["tables"].get(table, {}).get(record_id)
        if row is None:
            raise RecordNotFoundError(
                f"Record not found: {table}/{record_id}", operation="get", target=record_id
            )
        return dict(row)

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        record = dict(row)
        record_id = str(record.get("id") or uuid.uuid4())
        record["id"] = record_id
        with self._lock:
            data = self._read_data()
            rows = data["tables"].setdefault(table, {})
            if record_id in rows:
                raise StorageFailure(
                    f"Duplicate record id: {table}/{record_id}",
                    operation="insert",
                    target=record_id,
                )
            rows[record_id] = record
            self._write_data(data)
        return dict(record)

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> Row:
        with self._lock:
            data = self._read_data()
            rows = data["tables"].get(table, {})
            if record_id not in rows:
                raise RecordNotFoundError(
                    f"Record not found: {table}/{record_id}", operation="update", target=record_id
                )
            updated = {**rows[record_id], **dict(patch), "id": record_id}
            rows[record_id] = updated
            self._write_data(data)
        return dict(updated)

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            data = self._read_data()
            rows = data["tables"].get(table, {})
            if record_id not in rows:
                return False
            del rows[record_id]
            self._write_data(data)
        return True

    def query_columns(self, table: str) -> list[Row]:
        with self._lock:
            data = self._read_data()
        columns = data["columns"].get(table)
        if not columns:
            raise StorageFailure(
                f"Column catalog unavailable for table: {table}",
                operation="query_columns",
                target=table,
            )
        return [dict(column) for column in columns]

    def set_columns(self, table: str, columns: list[Mapping[str, Any]]) -> None:
        with self._lock:
            data = self._read_data()
            data["columns"][table] = [dict(column) for column in columns]
            self._write_data(data)

    def _read_data(self) -> dict[str, Any]:
        if not self._store_path.exists():
            return {"version": _STORE_VERSION, "tables": {}, "columns": {}}

        try:
            raw = json.loads(self._store_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StorageFailure(
                f"Invalid record store JSON: {self._store_path}",
                operation="read",
                target=str(self._store_path),
            ) from exc
        except OSError as exc:
            raise StorageFailure(
                f"Failed to read record store: {exc}",
                operation="read",
                target=str(self._store_path),
            ) from exc

        return {
            "version": int(raw.get("version", _STORE_VERSION)),
            "tables": {name: dict(rows) for name, rows in raw.get("tables", {}).items()},
            "columns": dict(raw.get("columns", {})),
        }

    def _write_data(self, data: dict[str, Any]) -> None:
        self._store_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._store_path.with_suffix(f"{self._store_path.suffix}.tmp")

        payload = {
            "version": data["version"],
            "columns": data["columns"],
            "tables": {
                name: {key: rows[key] for key in sorted(rows)}
                for name, rows in sorted(data["tables"].items())
            },
        }
        try:
            temp_path.write_text(
                json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False),
                encoding="utf-8",
            )
            temp_path.replace(self._store_path)
        except OSError as exc:
            raise StorageFailure(
                f"Failed to write record store: {exc}",
                operation="write",
                target=str(self._store_path),
            ) from exc
