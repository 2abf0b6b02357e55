"""
CSV rendering of the security and certification logs.

Each report is a header record followed by one content record per row,
UTF-8, comma separated and double-quote escaped.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from . import security_logs

logger = logging.getLogger(__name__)

SECURITY_LOG_HEADERS = [
    "ID",
    "Action",
    "Details",
    "Originator ID",
    "Originator Type",
    "Originator Identifier",
    "Originator IP Address",
    "Target ID",
    "Target Type",
    "Target Identifier",
    "Logged At",
]

CERTIFICATION_LOG_HEADERS = [
    "ID",
    "Approver ID",
    "Approver Role",
    "Approver Identifier",
    "Approver IP Address",
    "User ID",
    "User Role",
    "User Identifier",
    "User IP Address",
    "Requested At",
    "Certified At",
    "Expires At",
    "Denied At",
    "Inserted At",
    "Updated At",
]


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def dump_row(row: list[Any]) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, delimiter=",", quotechar='"', lineterminator="\n").writerow(
        [_cell(v) for v in row]
    )
    return buffer.getvalue()


def render_security_log_header() -> str:
    return dump_row(SECURITY_LOG_HEADERS)


def render_certification_log_header() -> str:
    return dump_row(CERTIFICATION_LOG_HEADERS)


def format_duration(seconds: Any) -> str:
    """Seconds as zero padded HH:MM:SS."""
    try:
        total = int(float(seconds))
    except (TypeError, ValueError):
        return str(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def parse_details(details: dict[str, Any] | None) -> str | None:
    if details is None:
        return None
    parts = []
    for key in sorted(details):
        value = details[key]
        if key == "duration":
            value = format_duration(value)
        parts.append(f"{key}: {value}")
    return ", ".join(parts)


def _security_log_row(record: Any) -> list[Any]:
    return [
        record.id,
        record.action,
        parse_details(record.details),
        record.originator_id,
        record.originator_role,
        record.originator_identifier,
        record.originator_remote_ip,
        record.target_id,
        record.target_type,
        record.target_identifier,
        record.logged_at,
    ]


def _certification_log_row(record: Any) -> list[Any]:
    return [
        record.id,
        record.approver_id,
        record.approver_role,
        record.approver_identifier,
        record.approver_remote_ip,
        record.user_id,
        record.user_role,
        record.user_identifier,
        record.user_remote_ip,
        record.requested_at,
        record.certified_at,
        record.expires_at,
        record.denied_at,
        record.inserted_at,
        record.updated_at,
    ]


CONTENT_SCHEMAS = {
    "security-log-content.csv": _security_log_row,
    "certification-log-content.csv": _certification_log_row,
}


def render(file_name: str, record: Any) -> str:
    try:
        schema = CONTENT_SCHEMAS[file_name]
    except KeyError:
        raise ValueError(f"unknown report: {file_name}")
    return dump_row(schema(record))


def stream_security_log(
    db: Session, start: datetime | None = None, end: datetime | None = None
) -> Iterator[str]:
    yield render_security_log_header()
    count = 0
    for record in security_logs.stream_security_log(db, start, end):
        count += 1
        yield render("security-log-content.csv", record)
    logger.info(f"Security log export rendered {count} rows")


def stream_certification_log(
    db: Session, start: datetime | None = None, end: datetime | None = None
) -> Iterator[str]:
    yield render_certification_log_header()
    count = 0
    for record in security_logs.stream_certification_log(db, start, end):
        count += 1
        yield render("certification-log-content.csv", record)
    logger.info(f"Certification log export rendered {count} rows")
