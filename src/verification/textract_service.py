"""AWS Textract service for receipt OCR."""

import os
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.retry import (
    RetryExhaustedError,
    provider_client_config,
    retry_call,
)
from .models import OcrText, StageResult

logger = logging.getLogger(__name__)

# Provider errors about the document itself; retrying cannot help
CONTENT_ERROR_CODES = {
    'UnsupportedDocumentException',
    'BadDocumentException',
    'DocumentTooLargeException',
    'InvalidParameterException',
    'InvalidS3ObjectException',
}

OCR_UNAVAILABLE = 'OCR_UNAVAILABLE'
OCR_REJECTED = 'OCR_REJECTED'
OCR_EMPTY = 'OCR_EMPTY'


class TextractService:
    """AWS Textract client wrapper for receipt text detection."""

    def __init__(
        self,
        client: Optional[Any] = None,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        connect_timeout: int = 5,
        read_timeout: int = 30,
        sleep=None
    ):
        """
        Initialize Textract client.

        Args:
            client: Optional pre-built boto3 Textract client
            max_attempts: Attempts for transient errors
            base_delay: Initial backoff in seconds
            max_delay: Backoff ceiling in seconds
            connect_timeout: Connect timeout for a new client
            read_timeout: Read timeout for a new client
            sleep: Sleep function used between retries
        """
        if client is not None:
            self.client = client
        else:
            config = provider_client_config(connect_timeout, read_timeout)
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                self.client = boto3.client('textract', endpoint_url=endpoint_url, config=config)
            else:
                self.client = boto3.client('textract', config=config)

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    def extract_text(self, bucket: str, key: str) -> StageResult:
        """
        Detect the text of a stored receipt.

        Args:
            bucket: S3 bucket name
            key: S3 object key

        Returns:
            StageResult carrying OcrText on success. Failures are tagged
            OCR_UNAVAILABLE (transient errors exhausted), OCR_REJECTED
            (the provider refused the document) or OCR_EMPTY.
        """
        attempts = 0

        def call():
            nonlocal attempts
            attempts += 1
            return self.client.detect_document_text(
                Document={
                    'S3Object': {
                        'Bucket': bucket,
                        'Name': key
                    }
                }
            )

        logger.info(f"Detecting document text: s3://{bucket}/{key}")

        try:
            response = retry_call(
                call,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                sleep=self.sleep
            )
        except RetryExhaustedError as e:
            return StageResult.failure(OCR_UNAVAILABLE, str(e.last_error), attempts=attempts)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in CONTENT_ERROR_CODES:
                logger.warning(f"Textract rejected document: {error_code}")
            else:
                logger.error(f"Textract detection failed: {error_code}")
            return StageResult.failure(OCR_REJECTED, error_code, attempts=attempts)
        except BotoCoreError as e:
            # Non-retryable client-side failure
            logger.error(f"Textract call failed: {str(e)}")
            return StageResult.failure(OCR_UNAVAILABLE, str(e), attempts=attempts)

        ocr = self.parse_response(response)
        if not ocr.text.strip():
            logger.warning(f"No text detected in s3://{bucket}/{key}")
            return StageResult.failure(OCR_EMPTY, 'No text detected', attempts=attempts)

        logger.info(f"Detected {ocr.line_count} lines, confidence {ocr.confidence:.2f}")
        return StageResult.success(ocr, attempts=attempts)

    @staticmethod
    def parse_response(response: Dict[str, Any]) -> OcrText:
        """
        Build OcrText from a detect_document_text response.

        Text is the LINE blocks joined by newlines; confidence is their mean
        confidence scaled to [0, 1].
        """
        lines = [
            block for block in response.get('Blocks', [])
            if block.get('BlockType') == 'LINE'
        ]

        if not lines:
            return OcrText(text='', confidence=0.0, line_count=0)

        text = '\n'.join(block.get('Text', '') for block in lines)
        confidence = sum(float(block.get('Confidence', 0)) for block in lines) / len(lines) / 100

        return OcrText(
            text=text,
            confidence=round(min(1.0, max(0.0, confidence)), 4),
            line_count=len(lines)
        )

