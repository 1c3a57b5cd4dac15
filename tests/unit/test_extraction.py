"""Unit tests for structured extraction."""

import json
import pytest
from unittest.mock import Mock
from datetime import date, timedelta
from botocore.exceptions import ClientError
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from verification.extraction import (
    AMOUNT_IMPLAUSIBLE,
    DATE_IMPLAUSIBLE,
    EXTRACTION_UNAVAILABLE,
    PARSE_FAILURE,
    ReceiptExtractionService,
    normalize_format,
    parse_extraction_response,
)

TODAY = date(2025, 3, 10)


def client_error(code, status=400):
    return ClientError(
        {'Error': {'Code': code, 'Message': code}, 'ResponseMetadata': {'HTTPStatusCode': status}},
        'Converse'
    )


@pytest.fixture
def payload():
    """A well-formed extractor reply."""
    return {
        'retailer': 'Amazon',
        'retailerConfidence': 0.95,
        'amount': 28.99,
        'currency': 'USD',
        'amountConfidence': 0.9,
        'bookTitle': 'AI-Born',
        'bookTitleConfidence': 0.97,
        'purchaseDate': (TODAY - timedelta(days=1)).isoformat(),
        'orderNumber': '112-3456789-0123456',
        'format': 'Hardcover',
        'piiDetected': ['Name', 'address'],
        'requiresManualReview': False,
        'manualReviewReason': None,
        'overallConfidence': 0.92
    }


class TestParseExtractionResponse:
    """Test cases for parse_extraction_response."""

    def test_valid_reply(self, payload):
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.retailer == 'Amazon'
        assert result.amount == 28.99
        assert result.currency == 'USD'
        assert result.book_title == 'AI-Born'
        assert result.purchase_date == TODAY - timedelta(days=1)
        assert result.format == 'hardcover'
        assert result.pii_detected == ['address', 'name']
        assert result.requires_manual_review is False
        assert result.manual_review_reason is None
        assert result.confidence == 0.92

    def test_reply_wrapped_in_prose(self, payload):
        raw = "Here is the data:\n```json\n" + json.dumps(payload) + "\n```"
        result = parse_extraction_response(raw, TODAY)

        assert result.retailer == 'Amazon'
        assert result.requires_manual_review is False

    def test_non_json_reply_is_conservative(self):
        """Test that an unusable reply forces manual review with nothing extracted."""
        result = parse_extraction_response("I cannot read this receipt.", TODAY)

        assert result.requires_manual_review is True
        assert result.manual_review_reason == PARSE_FAILURE
        assert result.confidence == 0.0
        assert result.retailer is None
        assert result.amount is None
        assert result.purchase_date is None

    def test_missing_required_field_is_conservative(self, payload):
        del payload['overallConfidence']
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.manual_review_reason == PARSE_FAILURE
        assert result.confidence == 0.0

    def test_missing_nullable_key_is_conservative(self, payload):
        del payload['bookTitle']
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.manual_review_reason == PARSE_FAILURE

    def test_out_of_range_confidence_is_conservative(self, payload):
        payload['overallConfidence'] = 1.5
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.manual_review_reason == PARSE_FAILURE

    def test_json_array_is_conservative(self):
        result = parse_extraction_response('[{"retailer": "Amazon"}]', TODAY)
        assert result.manual_review_reason == PARSE_FAILURE

    def test_future_date_rejected(self, payload):
        payload['purchaseDate'] = (TODAY + timedelta(days=30)).isoformat()
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.purchase_date is None
        assert result.rejected_purchase_date == TODAY + timedelta(days=30)
        assert result.requires_manual_review is True
        assert DATE_IMPLAUSIBLE in result.manual_review_reason

    def test_ancient_date_rejected(self, payload):
        payload['purchaseDate'] = '2010-01-01'
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.purchase_date is None
        assert DATE_IMPLAUSIBLE in result.manual_review_reason

    def test_unparseable_date(self, payload):
        payload['purchaseDate'] = 'sometime last spring'
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.purchase_date is None
        assert result.manual_review_reason == DATE_IMPLAUSIBLE

    def test_negative_amount(self, payload):
        payload['amount'] = -5
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.amount is None
        assert result.amount_confidence == 0.0
        assert AMOUNT_IMPLAUSIBLE in result.manual_review_reason

    def test_currency_normalized(self, payload):
        payload['currency'] = 'gbp'
        assert parse_extraction_response(json.dumps(payload), TODAY).currency == 'GBP'

    def test_invalid_currency_defaults_to_usd(self, payload):
        payload['currency'] = 'dollars'
        assert parse_extraction_response(json.dumps(payload), TODAY).currency == 'USD'

    def test_extractor_flag_kept(self, payload):
        payload['requiresManualReview'] = True
        payload['manualReviewReason'] = 'Receipt looks edited'
        result = parse_extraction_response(json.dumps(payload), TODAY)

        assert result.requires_manual_review is True
        assert result.manual_review_reason == 'Receipt looks edited'


class TestNormalizeFormat:
    """Test cases for format normalization."""

    @pytest.mark.parametrize('raw,expected', [
        ('Hardcover', 'hardcover'),
        ('hardback', 'hardcover'),
        ('Kindle Edition', 'ebook'),
        ('e-book', 'ebook'),
        ('Audible Audiobook', 'audiobook'),
        ('paperback', None),
        (None, None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_format(raw) == expected


class TestReceiptExtractionService:
    """Test cases for the Bedrock-backed extractor."""

    @staticmethod
    def converse_reply(text):
        return {'output': {'message': {'role': 'assistant', 'content': [{'text': text}]}}}

    def test_extract_success(self, payload):
        client = Mock()
        client.converse.return_value = self.converse_reply(json.dumps(payload))
        service = ReceiptExtractionService('model-x', client=client, sleep=Mock())

        stage = service.extract("AMAZON ORDER ...", TODAY)

        assert stage.ok is True
        assert stage.attempts == 1
        assert stage.value.retailer == 'Amazon'

        kwargs = client.converse.call_args.kwargs
        assert kwargs['modelId'] == 'model-x'
        assert kwargs['inferenceConfig']['temperature'] == 0
        assert "AMAZON ORDER ..." in kwargs['messages'][0]['content'][0]['text']

    def test_parse_failure_is_stage_failure_with_conservative_value(self):
        client = Mock()
        client.converse.return_value = self.converse_reply("not json")
        service = ReceiptExtractionService('model-x', client=client, sleep=Mock())

        stage = service.extract("text", TODAY)

        assert stage.ok is False
        assert stage.error_code == PARSE_FAILURE
        assert stage.value.requires_manual_review is True
        assert stage.value.confidence == 0.0

    def test_throttling_exhausts_retries(self):
        client = Mock()
        client.converse.side_effect = client_error('ThrottlingException')
        sleep = Mock()
        service = ReceiptExtractionService('model-x', client=client, max_attempts=3, sleep=sleep)

        stage = service.extract("text", TODAY)

        assert stage.ok is False
        assert stage.error_code == EXTRACTION_UNAVAILABLE
        assert stage.attempts == 3
        assert client.converse.call_count == 3
        assert sleep.call_count == 2
        assert stage.value.manual_review_reason == EXTRACTION_UNAVAILABLE

    def test_non_transient_error_not_retried(self):
        client = Mock()
        client.converse.side_effect = client_error('AccessDeniedException', 403)
        service = ReceiptExtractionService('model-x', client=client, sleep=Mock())

        stage = service.extract("text", TODAY)

        assert stage.error_code == EXTRACTION_UNAVAILABLE
        assert client.converse.call_count == 1
