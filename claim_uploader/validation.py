"""Caller-side validation of files and classification fields."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from .models import (
    FILE_EXTENSIONS,
    FILE_SIZE_LIMITS,
    Classification,
    FileType,
    TransactionType,
    infer_file_type,
)


class ValidationError(ValueError):
    """Raised when an upload request is malformed. ``errors`` maps field to message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{field}: {message}" for field, message in self.errors.items()))


def _format_limit(limit: int) -> str:
    if limit >= 1024 ** 3:
        return f"{limit // 1024 ** 3} GB"
    return f"{limit // 1024 ** 2} MB"


def validate_file(path: Path, file_type: Optional[FileType] = None) -> Optional[str]:
    """Return an error message for an unusable file, or None."""
    file_path = Path(path)
    if not file_path.is_file():
        return f"File not found: {file_path}"

    inferred = infer_file_type(file_path.name)
    if inferred is None:
        x12 = "/".join(FILE_EXTENSIONS[FileType.X12])
        return f"Only X12 ({x12}) or CSV (.csv) files are supported."

    effective = file_type or inferred
    limit = FILE_SIZE_LIMITS[effective]
    if file_path.stat().st_size > limit:
        return f"File size exceeds {effective.value} limit of {_format_limit(limit)}"
    return None


def build_classification(
    source_system: Optional[str],
    transaction_type: Optional[str],
    business_date: Optional[str],
    batch_name: Optional[str] = None,
) -> Classification:
    """Validate raw form values and build a Classification."""
    errors: Dict[str, str] = {}

    if not source_system or not source_system.strip():
        errors["source_system"] = "Please select source system"

    parsed_type = None
    if not transaction_type:
        errors["transaction_type"] = "Please select transaction type"
    else:
        try:
            parsed_type = TransactionType(str(transaction_type).strip())
        except ValueError:
            allowed = ", ".join(t.value for t in TransactionType)
            errors["transaction_type"] = f"Transaction type must be one of {allowed}"

    if not business_date:
        errors["business_date"] = "Please select business date"
    else:
        try:
            datetime.strptime(business_date, "%Y-%m-%d")
        except ValueError:
            errors["business_date"] = "Business date must use YYYY-MM-DD"

    if errors:
        raise ValidationError(errors)

    return Classification(
        source_system=source_system.strip(),
        transaction_type=parsed_type,
        business_date=business_date,
        batch_name=(batch_name or "").strip() or None,
    )
