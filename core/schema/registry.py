"""Schema registry: client columns, custom placeholders and computed fields."""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from core.config.models import MatchingConfig
from core.schema.labels import (
    categorize_field,
    generate_description,
    generate_label,
    infer_type_from_value,
    map_postgres_type,
)
from core.schema.matching import suggest_field
from core.schema.models import (
    ColumnInfo,
    CustomPlaceholder,
    FieldDescriptor,
    InvalidMapping,
    SchemaMetadata,
    ValidationResult,
    ValidationWarning,
    ValidPlaceholder,
)
from core.storage.base import RecordStore
from core.utils.errors import StorageFailure

logger = logging.getLogger("trustdocs.schema")

CLIENTS_TABLE = "clients"
PLACEHOLDERS_TABLE = "document_placeholders"

_SYSTEM_COLUMNS = frozenset({"id", "created_at", "updated_at"})
_ADDRESS_COLUMNS = (
    "address_line_1",
    "address_line_2",
    "city",
    "state",
    "postal_code",
    "country",
)
_PLACEHOLDER_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")

DEFAULT_CLIENT_COLUMNS: tuple[ColumnInfo, ...] = (
    ColumnInfo("first_name", "text", nullable=False),
    ColumnInfo("last_name", "text", nullable=False),
    ColumnInfo("email", "text"),
    ColumnInfo("phone", "text"),
    ColumnInfo("address_line_1", "text"),
    ColumnInfo("address_line_2", "text"),
    ColumnInfo("city", "text"),
    ColumnInfo("state", "text"),
    ColumnInfo("postal_code", "text"),
    ColumnInfo("country", "text", default="Singapore"),
    ColumnInfo("date_of_birth", "date"),
    ColumnInfo("occupation", "text"),
    ColumnInfo("company", "text"),
    ColumnInfo("notes", "text"),
    ColumnInfo("status", "text", default="active"),
    ColumnInfo("client_type", "text", default="individual"),
)


@dataclass(frozen=True)
class _CacheEntry:
    columns: tuple[ColumnInfo, ...]
    fields: tuple[FieldDescriptor, ...]
    discovery_method: str
    timestamp: float


class SchemaCache:
    """Single-slot TTL cache owned by one registry instance."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entry: _CacheEntry | None = None

    def get(self) -> _CacheEntry | None:
        with self._lock:
            entry = self._entry
            if entry is None:
                return None
            if self._clock() - entry.timestamp >= self.ttl_seconds:
                self._entry = None
                return None
            return entry

    def put(
        self,
        columns: Iterable[ColumnInfo],
        fields: Iterable[FieldDescriptor],
        discovery_method: str,
    ) -> _CacheEntry:
        entry = _CacheEntry(
            columns=tuple(columns),
            fields=tuple(fields),
            discovery_method=discovery_method,
            timestamp=self._clock(),
        )
        with self._lock:
            self._entry = entry
        return entry

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None

    def peek(self) -> _CacheEntry | None:
        with self._lock:
            return self._entry


class SchemaRegistry:
    """Discover substitutable fields and validate placeholder mappings."""

    def __init__(
        self,
        store: RecordStore,
        config: MatchingConfig,
        *,
        default_columns: Iterable[ColumnInfo] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._config = config
        self._default_columns = tuple(default_columns or DEFAULT_CLIENT_COLUMNS)
        self._cache = SchemaCache(config.schema_cache_ttl_seconds, clock=clock)
        self._refresh_lock = threading.Lock()

    def list_fields(
        self, category: str | None = None, include_computed: bool = True
    ) -> list[FieldDescriptor]:
        fields = list(self._snapshot().fields)
        if category and category != "all":
            fields = [item for item in fields if item.category == category]
        if not include_computed:
            fields = [item for item in fields if not item.computed]
        return fields

    def field_names(self) -> list[str]:
        return [item.name for item in self._snapshot().fields]

    def get_field(self, name: str) -> FieldDescriptor | None:
        for item in self._snapshot().fields:
            if item.name == name:
                return item
        return None

    def is_valid_field(self, name: str) -> bool:
        return self.get_field(name) is not None

    def fields_by_category(self) -> dict[str, list[FieldDescriptor]]:
        grouped: dict[str, list[FieldDescriptor]] = {}
        for item in self._snapshot().fields:
            grouped.setdefault(item.category or "other", []).append(item)
        return {key: grouped[key] for key in sorted(grouped)}

    def client_columns(self) -> list[ColumnInfo]:
        return list(self._snapshot().columns)

    def validate(
        self,
        mapping: Mapping[str, str],
        *,
        extra_field_names: Iterable[str] = (),
    ) -> ValidationResult:
        """Validate literal -> field name pairs against the merged field list."""

        snapshot = self._snapshot()
        descriptors = {item.name: item for item in snapshot.fields}
        for extra in extra_field_names:
            if extra and extra not in descriptors:
                descriptors[extra] = _custom_field_descriptor(extra)

        available = list(descriptors)
        valid: list[ValidPlaceholder] = []
        invalid: list[InvalidMapping] = []

        for literal, field_name in mapping.items():
            descriptor = descriptors.get(field_name)
            if descriptor is not None:
                valid.append(ValidPlaceholder(name=literal, field=descriptor))
                continue
            invalid.append(
                InvalidMapping(
                    field_name=field_name,
                    placeholder=literal,
                    suggestion=suggest_field(field_name, available, self._config.aliases),
                )
            )

        return ValidationResult(
            valid=not invalid,
            valid_count=len(valid),
            invalid_count=len(invalid),
            total_count=len(mapping),
            valid_placeholders=valid,
            invalid_mappings=invalid,
            warnings=_multiple_usage_warnings(valid),
        )

    def suggest(self, name: str) -> str | None:
        return suggest_field(name, self.field_names(), self._config.aliases)

    def list_placeholders(self) -> list[CustomPlaceholder]:
        rows = self._store.select(PLACEHOLDERS_TABLE)
        placeholders = [
            CustomPlaceholder(
                name=str(row["name"]),
                label=str(row.get("label") or row["name"]),
                description=str(row.get("description") or ""),
                field_type=str(row.get("field_type") or "text"),
            )
            for row in rows
            if row.get("name")
        ]
        return sorted(placeholders, key=lambda item: item.name)

    def create_placeholder(
        self,
        name: str,
        label: str,
        description: str = "",
        field_type: str = "text",
    ) -> CustomPlaceholder:
        """Create a durable custom placeholder and invalidate the schema cache."""

        clean_name = name.strip()
        clean_label = label.strip()
        if not clean_name or not clean_label:
            raise ValueError("Name and label are required")
        if not _PLACEHOLDER_NAME_RE.match(clean_name):
            raise ValueError(
                "Name must start with a letter and contain only lowercase letters, "
                "numbers, and underscores"
            )
        if self._store.select(PLACEHOLDERS_TABLE, {"name": clean_name}):
            raise ValueError(f"A placeholder named '{clean_name}' already exists")

        placeholder = CustomPlaceholder(
            name=clean_name,
            label=clean_label,
            description=description.strip(),
            field_type=field_type,
        )
        self._store.insert(
            PLACEHOLDERS_TABLE,
            {
                "name": placeholder.name,
                "label": placeholder.label,
                "description": placeholder.description,
                "field_type": placeholder.field_type,
            },
        )
        self.invalidate()
        logger.info("created custom placeholder %s", placeholder.name)
        return placeholder

    def invalidate(self) -> None:
        """Drop cached discovery; the next read rediscovers synchronously."""

        self._cache.invalidate()

    def refresh(self) -> list[FieldDescriptor]:
        self.invalidate()
        return self.list_fields()

    def metadata(self) -> SchemaMetadata:
        entry = self._cache.peek()
        return SchemaMetadata(
            is_cached=self._cache.get() is not None,
            last_discovery=entry.timestamp if entry is not None else None,
            discovery_method=entry.discovery_method if entry is not None else "unknown",
            field_count=len(entry.fields) if entry is not None else 0,
            ttl_seconds=self._cache.ttl_seconds,
        )

    def _snapshot(self) -> _CacheEntry:
        cached = self._cache.get()
        if cached is not None:
            return cached

        with self._refresh_lock:
            cached = self._cache.get()
            if cached is not None:
                return cached

            columns, method = self._discover_columns()
            fields = self._build_fields(columns)
            logger.info(
                "schema discovery completed using %s with %d fields", method, len(fields)
            )
            return self._cache.put(columns, fields, method)

    def _discover_columns(self) -> tuple[list[ColumnInfo], str]:
        try:
            catalog = self._store.query_columns(CLIENTS_TABLE)
        except StorageFailure as exc:
            logger.warning("column catalog unavailable, inferring from sample: %s", exc)
        else:
            columns = [
                ColumnInfo(
                    name=str(item["name"]),
                    type=map_postgres_type(str(item.get("type") or "text")),
                    nullable=bool(item.get("nullable", True)),
                    default=item.get("default"),
                )
                for item in catalog
                if item.get("name") and item["name"] not in _SYSTEM_COLUMNS
            ]
            if columns:
                return columns, "catalog"

        try:
            sample_rows = self._store.select(CLIENTS_TABLE)
        except StorageFailure as exc:
            logger.warning("sample inference failed, using default columns: %s", exc)
            sample_rows = []

        if sample_rows:
            sample = sample_rows[0]
            columns = [
                ColumnInfo(
                    name=key,
                    type=infer_type_from_value(value),
                    nullable=value is None,
                )
                for key, value in sample.items()
                if key not in _SYSTEM_COLUMNS
            ]
            if columns:
                return columns, "sample"

        logger.warning("schema discovery degraded to default column list")
        return list(self._default_columns), "default"

    def _build_fields(self, columns: list[ColumnInfo]) -> list[FieldDescriptor]:
        fields: dict[str, FieldDescriptor] = {}

        for column in columns:
            fields.setdefault(
                column.name,
                FieldDescriptor(
                    name=column.name,
                    label=generate_label(column.name),
                    description=generate_description(column.name, column.type),
                    category=categorize_field(column.name),
                    type=column.type,
                    source="client",
                ),
            )

        try:
            placeholders = self.list_placeholders()
        except StorageFailure as exc:
            logger.warning("custom placeholders unavailable: %s", exc)
            placeholders = []

        for placeholder in placeholders:
            fields.setdefault(
                placeholder.name,
                FieldDescriptor(
                    name=placeholder.name,
                    label=placeholder.label,
                    description=placeholder.description
                    or f"Value for {placeholder.name} placeholder",
                    category="custom",
                    type=placeholder.field_type,
                    custom=True,
                    source="placeholder",
                ),
            )

        for computed in _computed_fields(set(fields)):
            fields.setdefault(computed.name, computed)

        return list(fields.values())


def _computed_fields(base_names: set[str]) -> list[FieldDescriptor]:
    computed: list[FieldDescriptor] = []

    if {"first_name", "last_name"} <= base_names:
        computed.append(
            FieldDescriptor(
                name="full_name",
                label="Full Name",
                description="Complete client name",
                category="personal",
                computed=True,
                source="computed",
            )
        )

    if any(name in base_names for name in _ADDRESS_COLUMNS):
        computed.append(
            FieldDescriptor(
                name="full_address",
                label="Full Address",
                description="Complete formatted address",
                category="contact",
                computed=True,
                source="computed",
            )
        )

    computed.extend(
        [
            FieldDescriptor(
                name="current_date",
                label="Current Date",
                description="Today's date",
                category="system",
                type="date",
                computed=True,
                source="computed",
            ),
            FieldDescriptor(
                name="current_year",
                label="Current Year",
                description="Current year",
                category="system",
                type="number",
                computed=True,
                source="computed",
            ),
            FieldDescriptor(
                name="current_datetime",
                label="Current Date & Time",
                description="Current date and time",
                category="system",
                type="datetime",
                computed=True,
                source="computed",
            ),
        ]
    )
    return computed


def _custom_field_descriptor(name: str) -> FieldDescriptor:
    return FieldDescriptor(
        name=name,
        label=generate_label(name),
        description=f"Value for {name} placeholder",
        category="custom",
        type="custom",
        custom=True,
        source="placeholder",
    )


def _multiple_usage_warnings(valid: list[ValidPlaceholder]) -> list[ValidationWarning]:
    counts: Counter[str] = Counter(item.field.name for item in valid)
    warnings: list[ValidationWarning] = []
    for item in valid:
        field = item.field
        count = counts.get(field.name, 0)
        if count <= 1 or field.computed or field.custom:
            continue
        warnings.append(
            ValidationWarning(
                type="multiple_usage",
                field_name=field.name,
                count=count,
                message=f'Field "{field.name}" is used {count} times',
            )
        )
        counts[field.name] = 0
    return warnings
