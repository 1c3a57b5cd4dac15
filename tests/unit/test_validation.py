"""Unit tests for upload validation, request validators and receipt storage."""

import re
import pytest
from unittest.mock import Mock
from datetime import datetime
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from receipts.validation import (
    calculate_fingerprint,
    detect_mime_type,
    normalize_mime_type,
    validate_receipt_file,
)
from receipts.models import ValidatedFile
from receipts.storage import ReceiptStorage, generate_secure_filename, sanitize_filename
from shared.exceptions import PayloadTooLargeError, StorageError, TypeMismatchError, ValidationError
from shared.validators import (
    decode_base64_file,
    validate_email,
    validate_format,
    validate_purchase_date,
    validate_review_action,
)


class TestDetectMimeType:
    """Test cases for magic byte detection."""

    def test_detects_supported_types(self, png_bytes, jpeg_bytes, pdf_bytes):
        assert detect_mime_type(png_bytes) == 'image/png'
        assert detect_mime_type(jpeg_bytes) == 'image/jpeg'
        assert detect_mime_type(pdf_bytes) == 'application/pdf'

    def test_unknown_signature(self):
        assert detect_mime_type(b'GIF89a....') is None

    def test_normalize_aliases(self):
        assert normalize_mime_type('image/jpg') == 'image/jpeg'
        assert normalize_mime_type('IMAGE/PNG; charset=binary') == 'image/png'
        assert normalize_mime_type(None) == ''


class TestValidateReceiptFile:
    """Test cases for validate_receipt_file."""

    def test_valid_png(self, png_bytes):
        """Test a well-formed PNG declared as a PNG."""
        result = validate_receipt_file(png_bytes, 'image/png', 'receipt.png')

        assert result.mime_type == 'image/png'
        assert result.extension == 'png'
        assert result.size == len(png_bytes)
        assert result.fingerprint == calculate_fingerprint(png_bytes)
        assert len(result.fingerprint) == 64

    def test_jpeg_alias_accepted(self, jpeg_bytes):
        result = validate_receipt_file(jpeg_bytes, 'image/jpg', 'receipt.jpg')

        assert result.mime_type == 'image/jpeg'
        assert result.extension == 'jpg'

    def test_pdf_declared_as_png_is_type_mismatch(self, pdf_bytes):
        """A PDF sent as image/png is rejected regardless of its filename."""
        with pytest.raises(TypeMismatchError) as exc_info:
            validate_receipt_file(pdf_bytes, 'image/png', 'receipt.png')

        assert exc_info.value.error_code == 'TYPE_MISMATCH'
        assert exc_info.value.status_code == 415

    def test_extension_does_not_matter(self, png_bytes):
        """Only the bytes decide the type; a misleading name is irrelevant."""
        result = validate_receipt_file(png_bytes, 'image/png', 'receipt.pdf')
        assert result.extension == 'png'

    def test_empty_file(self):
        with pytest.raises(ValidationError, match="empty"):
            validate_receipt_file(b'', 'image/png', 'receipt.png')

    def test_too_large(self, png_bytes):
        """Test size ceiling on the actual content."""
        with pytest.raises(PayloadTooLargeError) as exc_info:
            validate_receipt_file(png_bytes, 'image/png', 'receipt.png', max_size=10)

        assert exc_info.value.error_code == 'TOO_LARGE'

    def test_declared_size_too_large(self, png_bytes):
        with pytest.raises(PayloadTooLargeError):
            validate_receipt_file(
                png_bytes, 'image/png', 'receipt.png',
                declared_size=20 * 1024 * 1024
            )

    def test_declared_size_mismatch(self, png_bytes):
        with pytest.raises(ValidationError, match="Declared file size"):
            validate_receipt_file(png_bytes, 'image/png', 'receipt.png', declared_size=1)

    def test_missing_filename(self, png_bytes):
        with pytest.raises(ValidationError, match="Filename is required"):
            validate_receipt_file(png_bytes, 'image/png', '  ')

    def test_executable_rejected(self):
        with pytest.raises(ValidationError, match="security scan"):
            validate_receipt_file(b'MZ\x90\x00\x03\x00\x00\x00', 'image/png', 'receipt.png')

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError, match="Invalid file type"):
            validate_receipt_file(b'GIF89a\x01\x00\x01\x00', 'image/gif', 'receipt.gif')

    def test_truncated_pdf_rejected(self):
        with pytest.raises(ValidationError, match="PDF"):
            validate_receipt_file(b'%PDF-1.4\n1 0 obj', 'application/pdf', 'receipt.pdf')

    def test_png_without_header_chunk_rejected(self):
        with pytest.raises(ValidationError, match="PNG"):
            validate_receipt_file(b'\x89PNG\r\n\x1a\n\x00\x00\x00\x00', 'image/png', 'receipt.png')


class TestStorageNaming:
    """Test cases for stored object names."""

    def test_sanitize_filename(self):
        sanitized = sanitize_filename('../../etc/pass wd..png')

        assert '/' not in sanitized
        assert ' ' not in sanitized
        assert not sanitized.startswith('.')
        assert '..' not in sanitized

    def test_secure_filename_format(self):
        name = generate_secure_filename(
            'My Receipt.png', 'png', 'user-123',
            now=datetime(2025, 1, 15, 10, 0, 0), nonce='abc'
        )

        assert re.match(r'^receipt-\d+-[0-9a-f]{16}\.png$', name)
        assert 'My' not in name

    def test_secure_filename_is_salted(self):
        now = datetime(2025, 1, 15, 10, 0, 0)
        first = generate_secure_filename('r.png', 'png', 'user-123', now=now)
        second = generate_secure_filename('r.png', 'png', 'user-123', now=now)

        assert first != second


class TestRequestValidators:
    """Test cases for request field validators."""

    def test_format_normalized(self):
        assert validate_format(' Hardcover ') == 'hardcover'
        assert validate_format(None) is None

    @pytest.mark.parametrize('value', [123, ['hardcover'], {'format': 'hardcover'}, True])
    def test_non_string_format(self, value):
        with pytest.raises(ValidationError):
            validate_format(value)

    @pytest.mark.parametrize('value', [20250309, ['2025-03-09'], {'date': '2025-03-09'}])
    def test_non_string_purchase_date(self, value):
        with pytest.raises(ValidationError):
            validate_purchase_date(value)

    def test_purchase_date_in_future(self):
        with pytest.raises(ValidationError, match="future"):
            validate_purchase_date('2025-03-10', today=datetime(2025, 3, 9).date())

    @pytest.mark.parametrize('value', [42, ['reader@example.com']])
    def test_non_string_email(self, value):
        with pytest.raises(ValidationError):
            validate_email(value)

    def test_non_string_action(self):
        with pytest.raises(ValidationError):
            validate_review_action(1)

    def test_non_string_file_data(self):
        with pytest.raises(ValidationError):
            decode_base64_file(12345)


class TestReceiptStorage:
    """Test cases for ReceiptStorage.store with a mocked S3 client."""

    @pytest.fixture
    def s3_client(self):
        client = Mock()
        client.file_exists.return_value = True
        client.object_url.side_effect = lambda key, base=None: f"s3://test-receipts-bucket/{key}"
        return client

    @pytest.fixture
    def validated(self):
        return ValidatedFile(mime_type='image/png', extension='png', size=68, fingerprint='a' * 64)

    def test_store_confirms_object(self, s3_client, validated):
        stored = ReceiptStorage(s3_client).store(b'data', validated, 'user-123', 'receipt.png')

        assert stored.key.startswith('receipts/receipt-')
        assert stored.url == f"s3://test-receipts-bucket/{stored.key}"
        s3_client.file_exists.assert_called_once_with(stored.key)
        s3_client.delete_file.assert_not_called()

    def test_unconfirmed_upload_is_discarded(self, s3_client, validated):
        s3_client.file_exists.return_value = False

        with pytest.raises(StorageError):
            ReceiptStorage(s3_client).store(b'data', validated, 'user-123', 'receipt.png')

        key = s3_client.upload_file.call_args.kwargs['key']
        s3_client.delete_file.assert_called_once_with(key)
        s3_client.object_url.assert_not_called()

    def test_upload_failure(self, s3_client, validated):
        s3_client.upload_file.side_effect = StorageError("Failed to upload file")

        with pytest.raises(StorageError):
            ReceiptStorage(s3_client).store(b'data', validated, 'user-123', 'receipt.png')

        s3_client.file_exists.assert_not_called()
