"""
Record enrichers.

An enricher is a function taking a LogRecord and returning a LogRecord. It
must not modify its input; every helper here returns a new record.
"""

import hashlib
import os
import platform
import re
import socket
import sys
import uuid
from collections.abc import Callable, Iterable, Mapping
from re import Pattern
from typing import Any

from .records import LogRecord

Enricher = Callable[[LogRecord], LogRecord]

SENSITIVE_KEYS = (
    "password",
    "passwd",
    "pwd",
    "token",
    "api_key",
    "apikey",
    "secret",
    "private_key",
)

REDACTED = "***REDACTED***"
HASHED = "***HASHED***"

DEFAULT_SECRET_PATTERNS: list[Pattern] = [
    re.compile(r'(password|passwd|pwd)["\']?\s*[:=]\s*["\']?([^"\'\s]+)', re.I),
    re.compile(r'(token|api_key|apikey)["\']?\s*[:=]\s*["\']?([^"\'\s]+)', re.I),
    re.compile(r'(secret|private_key)["\']?\s*[:=]\s*["\']?([^"\'\s]+)', re.I),
]

BEARER_PATTERN = re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+", re.I)


class MetadataEnricher:
    """Factories for common metadata enrichers."""

    @staticmethod
    def add_static_fields(static_fields: Mapping[str, Any]) -> Enricher:
        fields = dict(static_fields)

        def enrich(record: LogRecord) -> LogRecord:
            return record.with_metadata(**fields)

        return enrich

    @staticmethod
    def add_dynamic_fields(dynamic_fields: Callable[[], Mapping[str, Any]]) -> Enricher:
        """Fields are computed anew for every record."""

        def enrich(record: LogRecord) -> LogRecord:
            return record.with_metadata(**dynamic_fields())

        return enrich

    @staticmethod
    def add_context(context: Mapping[str, Any]) -> Enricher:
        return MetadataEnricher.add_static_fields(context)

    @staticmethod
    def add_process_info() -> Enricher:
        info = {
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "python_version": platform.python_version(),
        }
        return MetadataEnricher.add_static_fields(info)

    @staticmethod
    def add_environment_info() -> Enricher:
        def enrich(record: LogRecord) -> LogRecord:
            return record.with_metadata(
                environment=os.getenv("ENVIRONMENT", os.getenv("ENV", "development")),
                platform=sys.platform,
                arch=platform.machine(),
            )

        return enrich


def redact_secrets(patterns: list[Pattern] | None = None) -> Enricher:
    """
    Redact sensitive values from the message and metadata.

    Keys that look sensitive are replaced outright; string values are scanned
    for ``key=value`` secrets and bearer tokens.
    """
    patterns = DEFAULT_SECRET_PATTERNS if patterns is None else patterns

    def _redact_text(value: str) -> str:
        for pattern in patterns:
            value = pattern.sub(lambda m: f"{m.group(1)}={REDACTED}", value)
        return BEARER_PATTERN.sub(f"Bearer {REDACTED}", value)

    def _filter_value(value: Any) -> Any:
        if isinstance(value, str):
            return _redact_text(value)
        elif isinstance(value, dict):
            return {k: _filter_pair(k, v) for k, v in value.items()}
        elif isinstance(value, list | tuple):
            return type(value)(_filter_value(item) for item in value)
        return value

    def _filter_pair(key: Any, value: Any) -> Any:
        if isinstance(key, str) and any(k in key.lower() for k in SENSITIVE_KEYS):
            return REDACTED
        return _filter_value(value)

    def enrich(record: LogRecord) -> LogRecord:
        metadata = None
        if record.metadata is not None:
            metadata = {k: _filter_pair(k, v) for k, v in record.metadata.items()}
        return record.evolve(message=_redact_text(record.message), metadata=metadata)

    return enrich


def hash_user_data(fields_to_hash: Iterable[str] | None = None) -> Enricher:
    """
    Hash user-identifying metadata for privacy compliance.

    Each listed string field is replaced with a marker and a ``<field>_hash``
    companion holding a stable digest.
    """
    if fields_to_hash is None:
        fields_to_hash = ["email", "user_email", "username", "user_id", "ip_address"]
    fields = list(fields_to_hash)

    def _hash_value(value: str) -> str:
        return hashlib.sha256(value.encode()).hexdigest()[:16]

    def enrich(record: LogRecord) -> LogRecord:
        if not record.metadata:
            return record
        metadata = dict(record.metadata)
        for field in fields:
            if isinstance(metadata.get(field), str):
                metadata[f"{field}_hash"] = _hash_value(metadata[field])
                metadata[field] = HASHED
        return record.evolve(metadata=metadata)

    return enrich


def add_correlation_id(key: str = "correlation_id") -> Enricher:
    """Attach a fresh correlation ID unless the record already carries one."""

    def enrich(record: LogRecord) -> LogRecord:
        if record.metadata and key in record.metadata:
            return record
        return record.with_metadata(**{key: str(uuid.uuid4())})

    return enrich


class EnrichmentPipeline:
    """Applies enrichers in order, each to the previous one's output."""

    def __init__(self, enrichers: Iterable[Enricher] | None = None):
        self._enrichers: list[Enricher] = list(enrichers or [])

    def add(self, enricher: Enricher) -> "EnrichmentPipeline":
        self._enrichers.append(enricher)
        return self

    def process(self, record: LogRecord) -> LogRecord:
        for enricher in self._enrichers:
            record = enricher(record)
        return record

    @property
    def enrichers(self) -> list[Enricher]:
        return list(self._enrichers)

    def __len__(self) -> int:
        return len(self._enrichers)
