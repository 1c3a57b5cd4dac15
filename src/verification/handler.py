"""Lambda handler for background receipt verification."""

import json
import os
import logging
from typing import Dict, Any, List
import sys

# Add parent directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from pipeline.wiring import get_services

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for verification jobs.

    Triggered by the verification SQS queue. Each message carries one
    receipt_id. Failed messages are reported back so only they are retried.

    Args:
        event: SQS event
        context: Lambda context

    Returns:
        Partial batch response
    """
    records = event.get('Records', [])
    logger.info(f"Verification worker triggered with {len(records)} message(s)")

    failures: List[Dict[str, str]] = []
    for record in records:
        message_id = record.get('messageId')
        try:
            process_message(record)
        except Exception as e:
            logger.error(f"Verification failed for message {message_id}: {str(e)}", exc_info=True)
            failures.append({'itemIdentifier': message_id})

    return {'batchItemFailures': failures}


def process_message(record: Dict[str, Any]) -> None:
    """
    Process a single verification job.

    Args:
        record: SQS event record
    """
    try:
        body = json.loads(record.get('body') or '{}')
    except json.JSONDecodeError:
        logger.error(f"Dropping malformed verification message {record.get('messageId')}")
        return

    receipt_id = body.get('receipt_id') if isinstance(body, dict) else None
    if not receipt_id:
        logger.error(f"Dropping verification message without receipt_id {record.get('messageId')}")
        return

    logger.info(f"Processing receipt {receipt_id}")
    verification = get_services().processor.process(receipt_id)

    if verification is None:
        logger.info(f"Receipt {receipt_id} needed no processing")
    else:
        logger.info(f"Receipt {receipt_id} processed: {verification.decision} (score {verification.verification_score})")
