"""Tests for file and classification validation."""
import pytest

from claim_uploader.models import FILE_SIZE_LIMITS, FileType, TransactionType
from claim_uploader.validation import ValidationError, build_classification, validate_file


class TestValidateFile:
    def test_accepts_supported_file(self, tmp_path):
        path = tmp_path / "claims.x12"
        path.write_bytes(b"ISA*00*~")
        assert validate_file(path) is None

    def test_missing_file(self, tmp_path):
        assert "not found" in validate_file(tmp_path / "nope.x12")

    def test_directory_is_not_a_file(self, tmp_path):
        assert "not found" in validate_file(tmp_path)

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "scan.pdf"
        path.write_bytes(b"%PDF")
        assert "Only X12" in validate_file(path)

    def test_size_limit(self, tmp_path):
        path = tmp_path / "huge.x12"
        with open(path, "wb") as handle:
            handle.truncate(FILE_SIZE_LIMITS[FileType.X12] + 1)

        assert validate_file(path) == "File size exceeds X12 limit of 200 MB"
        # the CSV limit applies when the caller overrides the type
        assert validate_file(path, FileType.CSV) is None


class TestBuildClassification:
    def test_valid(self):
        classification = build_classification(" Hospital_A ", "835", "2026-10-19", " night-run ")

        assert classification.source_system == "Hospital_A"
        assert classification.transaction_type == TransactionType.REMITTANCE
        assert classification.business_date == "2026-10-19"
        assert classification.batch_name == "night-run"

    def test_blank_batch_name_dropped(self):
        assert build_classification("Hospital_A", "834", "2026-10-19", "  ").batch_name is None

    def test_collects_every_error(self):
        with pytest.raises(ValidationError) as excinfo:
            build_classification("", None, None)

        assert set(excinfo.value.errors) == {"source_system", "transaction_type", "business_date"}

    def test_rejects_unknown_transaction_type(self):
        with pytest.raises(ValidationError) as excinfo:
            build_classification("Hospital_A", "270", "2026-10-19")

        assert "834, 835, 837" in excinfo.value.errors["transaction_type"]

    @pytest.mark.parametrize("value", ["19/10/2026", "2026-13-01", "yesterday"])
    def test_rejects_bad_dates(self, value):
        with pytest.raises(ValidationError) as excinfo:
            build_classification("Hospital_A", "837", value)

        assert excinfo.value.errors == {"business_date": "Business date must use YYYY-MM-DD"}
        assert isinstance(excinfo.value, ValueError)
