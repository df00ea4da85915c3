"""Human-facing labels, descriptions, categories and display types for fields."""

from __future__ import annotations

import re
from collections.abc import Mapping
from types import MappingProxyType

_CATEGORY_KEYWORDS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "personal": (
            "first_name",
            "last_name",
            "full_name",
            "middle_name",
            "date_of_birth",
            "gender",
            "title",
            "age",
        ),
        "contact": (
            "email",
            "phone",
            "mobile",
            "address_line_1",
            "address_line_2",
            "city",
            "state",
            "postal_code",
            "country",
            "full_address",
            "zip",
            "zipcode",
        ),
        "professional": (
            "occupation",
            "company",
            "job_title",
            "department",
            "work_phone",
            "work_email",
            "employer",
            "position",
        ),
        "financial": (
            "income",
            "net_worth",
            "account_number",
            "bank_name",
            "tax_id",
            "ssn",
            "salary",
            "assets",
        ),
        "legal": ("citizenship", "passport_number", "drivers_license", "legal_status", "id_number"),
        "relationship": (
            "spouse_name",
            "emergency_contact",
            "relationship_manager",
            "referral_source",
            "next_of_kin",
        ),
        "preferences": (
            "preferred_language",
            "communication_preference",
            "timezone",
            "preferred_contact_method",
        ),
        "system": (
            "status",
            "client_type",
            "created_at",
            "updated_at",
            "current_date",
            "current_year",
            "current_datetime",
            "active",
            "archived",
        ),
    }
)

_SPECIAL_LABELS: Mapping[str, str] = MappingProxyType(
    {
        "ssn": "SSN",
        "tax_id": "Tax ID",
        "id": "ID",
        "uuid": "UUID",
        "url": "URL",
        "dob": "Date of Birth",
        "poc": "Point of Contact",
        "mgr": "Manager",
        "dept": "Department",
        "addr": "Address",
        "tel": "Telephone",
        "fax": "Fax",
        "mobile": "Mobile Phone",
    }
)

_KNOWN_DESCRIPTIONS: Mapping[str, str] = MappingProxyType(
    {
        "first_name": "Client's first name",
        "last_name": "Client's last name",
        "full_name": "Client's complete name",
        "middle_name": "Client's middle name or initial",
        "date_of_birth": "Client's date of birth",
        "gender": "Client's gender",
        "title": "Client's title (Mr., Mrs., Dr., etc.)",
        "email": "Primary email address",
        "phone": "Primary phone number",
        "mobile": "Mobile phone number",
        "address_line_1": "Primary address line",
        "address_line_2": "Secondary address line (apt, suite, etc.)",
        "city": "City name",
        "state": "State or province",
        "postal_code": "Postal or ZIP code",
        "country": "Country name",
        "full_address": "Complete formatted address",
        "occupation": "Job title or profession",
        "company": "Employer or company name",
        "work_email": "Work email address",
        "work_phone": "Work phone number",
        "job_title": "Official job title",
        "status": "Client status (active, inactive, etc.)",
        "client_type": "Type of client (individual, corporate, trust)",
        "current_date": "Current date",
        "current_year": "Current year",
        "current_datetime": "Current date and time",
    }
)

_TYPE_DESCRIPTIONS: Mapping[str, str] = MappingProxyType(
    {
        "string": "text information",
        "text": "detailed text information",
        "number": "numeric value",
        "date": "date value",
        "datetime": "date and time value",
        "boolean": "yes/no value",
        "email": "email address",
        "phone": "phone number",
    }
)

_POSTGRES_TYPES: Mapping[str, str] = MappingProxyType(
    {
        "character varying": "string",
        "varchar": "string",
        "text": "text",
        "integer": "number",
        "bigint": "number",
        "numeric": "number",
        "decimal": "number",
        "real": "number",
        "double precision": "number",
        "boolean": "boolean",
        "date": "date",
        "timestamp": "datetime",
        "timestamp without time zone": "datetime",
        "timestamp with time zone": "datetime",
        "timestamptz": "datetime",
        "time": "time",
        "uuid": "uuid",
        "json": "json",
        "jsonb": "json",
    }
)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)
_PHONE_RE = re.compile(r"^\+?[1-9][\d\s\-()]+$")


def categorize_field(field_name: str) -> str:
    """Assign a UI category using keyword containment in either direction."""

    lowered = field_name.lower()
    for category, keywords in _CATEGORY_KEYWORDS.items():
        if any(keyword in lowered or lowered in keyword for keyword in keywords):
            return category

    if lowered.startswith("custom_") or "_custom" in lowered or lowered.startswith("ext_"):
        return "custom"
    return "other"


def generate_label(field_name: str) -> str:
    """Convert snake_case to Title Case, honouring well-known abbreviations."""

    special = _SPECIAL_LABELS.get(field_name.lower())
    if special is not None:
        return special
    return " ".join(word[:1].upper() + word[1:].lower() for word in field_name.split("_") if word)


def generate_description(field_name: str, data_type: str) -> str:
    known = _KNOWN_DESCRIPTIONS.get(field_name)
    if known is not None:
        return known
    label = generate_label(field_name).lower()
    return f"Client's {label} {_TYPE_DESCRIPTIONS.get(data_type, 'information')}"


def map_postgres_type(pg_type: str) -> str:
    return _POSTGRES_TYPES.get(pg_type.lower(), "string")


def infer_type_from_value(value: object) -> str:
    """Guess a display type from a sample record value."""

    if value is None:
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (dict, list)):
        return "json"
    if not isinstance(value, str):
        return "string"

    if _DATE_RE.match(value):
        return "date"
    if _DATETIME_RE.match(value):
        return "datetime"
    if "@" in value and "." in value and value.index("@") < value.rindex("."):
        return "email"
    if _UUID_RE.match(value):
        return "uuid"
    if _PHONE_RE.match(value):
        return "phone"
    if len(value) > 255:
        return "text"
    return "string"
