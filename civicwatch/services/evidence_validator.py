"""File checks for evidence uploads.

Everything here is pure: callers pass in the declared MIME type, the size,
the first bytes of the payload and the client filename, and get back either
a classification or a ``ValidationFailed``.
"""
from __future__ import annotations

import re

from civicwatch.domain.errors import ValidationFailed
from civicwatch.domain.states import EvidenceType

MAX_FILE_SIZE = 50 * 1024 * 1024
HEADER_WINDOW = 12

ALLOWED_MIME_TYPES: dict[EvidenceType, tuple[str, ...]] = {
    EvidenceType.IMAGE: ("image/jpeg", "image/png", "image/gif", "image/webp", "image/heic", "image/heif"),
    EvidenceType.VIDEO: ("video/mp4", "video/quicktime", "video/webm", "video/mpeg"),
    EvidenceType.DOCUMENT: (
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ),
}

# (offset, signature) pairs; any one pair matching accepts the header.
MAGIC_BYTES: dict[str, tuple[tuple[int, bytes], ...]] = {
    "image/jpeg": ((0, b"\xff\xd8\xff"),),
    "image/png": ((0, b"\x89PNG"),),
    "image/gif": ((0, b"GIF8"),),
    "image/webp": ((8, b"WEBP"),),
    "image/heic": ((4, b"ftyp"),),
    "image/heif": ((4, b"ftyp"),),
    "video/mp4": ((4, b"ftyp"),),
    "video/quicktime": ((4, b"ftyp"), (4, b"moov"), (4, b"wide"), (4, b"mdat"), (4, b"free")),
    "video/webm": ((0, b"\x1a\x45\xdf\xa3"),),
    "application/pdf": ((0, b"%PDF"),),
    "application/msword": ((0, b"\xd0\xcf\x11\xe0"),),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ((0, b"PK\x03\x04"),),
}

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def allowed_mime_types() -> list[str]:
    return [mime for group in ALLOWED_MIME_TYPES.values() for mime in group]


def classify_mime_type(mime_type: str) -> EvidenceType | None:
    for evidence_type, group in ALLOWED_MIME_TYPES.items():
        if mime_type in group:
            return evidence_type
    return None


def normalize_mime_type(mime_type: str | None) -> str:
    # "image/jpeg; charset=binary" -> "image/jpeg"
    return str(mime_type or "").split(";", 1)[0].strip().lower()


def check_size(size: int, max_bytes: int = MAX_FILE_SIZE) -> None:
    if size <= 0:
        raise ValidationFailed("File is empty", fields=["file"])
    if size > max_bytes:
        raise ValidationFailed(
            f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
            fields=["file"],
        )


def check_mime_type(mime_type: str) -> EvidenceType:
    evidence_type = classify_mime_type(mime_type)
    if evidence_type is None:
        raise ValidationFailed(
            "Invalid file type",
            fields=["file"],
            allowed_types=allowed_mime_types(),
        )
    return evidence_type


def matches_magic_bytes(mime_type: str, header: bytes) -> bool:
    patterns = MAGIC_BYTES.get(mime_type)
    if not patterns:
        return mime_type in allowed_mime_types()
    window = header[:HEADER_WINDOW]
    return any(window[offset:offset + len(sig)] == sig for offset, sig in patterns)


def sanitize_filename(filename: str | None) -> str:
    name = str(filename or "")
    name = name.replace("..", "")
    name = re.sub(r"[/\\]", "_", name)
    name = re.sub(r"[^a-zA-Z0-9._-]", "_", name)
    name = name[:255]
    return name or "file"


def file_extension(sanitized_name: str) -> str:
    if "." not in sanitized_name:
        return "bin"
    ext = sanitized_name.rsplit(".", 1)[1]
    return ext or "bin"


def is_valid_uuid(value: str | None) -> bool:
    return bool(value and UUID_RE.match(value))
