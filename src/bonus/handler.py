"""Lambda handler for bonus claims."""

import json
import os
import logging
from typing import Dict, Any
import sys

# Add parent directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.auth import require_reviewer, require_user_id
from shared.response import success_response, error_response, exception_response
from shared.validators import validate_email, validate_required_fields
from shared.exceptions import NotFoundError, ReceiptPipelineException, ValidationError
from receipts.models import ReceiptStatus
from review.service import SYSTEM_ACTOR
from pipeline.wiring import get_services

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for bonus claim operations.

    Handles:
    - POST /bonus/claims - Claim the bonus for one of the caller's receipts
    - POST /bonus/claims/{receipt_id}/resend - Re-issue and resend links (reviewers)

    Args:
        event: Lambda event
        context: Lambda context

    Returns:
        API Gateway response
    """
    try:
        logger.info(f"Request: {event.get('httpMethod')} {event.get('path')}")

        http_method = event.get('httpMethod')
        path = event.get('path') or ''

        if path == '/bonus/claims' and http_method == 'POST':
            return handle_claim(event, require_user_id(event))
        elif path.startswith('/bonus/claims/') and path.endswith('/resend') and http_method == 'POST':
            return handle_resend(event, require_reviewer(event))
        else:
            return error_response("Route not found", status_code=404)

    except ReceiptPipelineException as e:
        logger.warning(f"Request rejected: {e.error_code} {e.message}")
        return exception_response(e)
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return error_response("Internal server error", status_code=500)


def handle_claim(event: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """
    Open a claim; issue it straight away if the receipt is already verified.

    Args:
        event: Lambda event
        user_id: User ID

    Returns:
        API Gateway response
    """
    try:
        body = json.loads(event.get('body') or '{}')
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")

    validate_required_fields(body, ['receipt_id', 'delivery_email'])
    delivery_email = validate_email(body['delivery_email'])

    services = get_services()
    receipt = services.receipts.get_receipt(body['receipt_id'])
    if receipt is None or receipt.user_id != user_id:
        raise NotFoundError("Receipt not found")
    if receipt.status == ReceiptStatus.REJECTED:
        raise ValidationError("Receipt was rejected and is not eligible for the bonus")

    claim = services.entitlements.open_claim(receipt, delivery_email)

    # The receipt may have been settled while the claim was being opened
    current = services.receipts.require_receipt(receipt.receipt_id, consistent_read=True)
    if current.status == ReceiptStatus.VERIFIED:
        issued = services.entitlements.issue_for_receipt(receipt.receipt_id, SYSTEM_ACTOR)
        if issued:
            claim = issued.claim
    elif current.status == ReceiptStatus.REJECTED:
        claim = services.entitlements.reject_claim(receipt.receipt_id, SYSTEM_ACTOR) or claim

    return success_response(
        data={
            'claim_id': claim.claim_id,
            'receipt_id': claim.receipt_id,
            'status': claim.status,
            'delivered': bool(claim.delivery_tracking_id),
        },
        status_code=201
    )


def handle_resend(event: Dict[str, Any], reviewer_id: str) -> Dict[str, Any]:
    path_params = event.get('pathParameters') or {}
    receipt_id = path_params.get('receipt_id')
    if not receipt_id:
        raise ValidationError("Receipt ID is required")

    result = get_services().entitlements.resend_delivery(receipt_id, reviewer_id)

    return success_response(data={
        'claim_id': result.claim.claim_id,
        'status': result.claim.status,
        'delivered': bool(result.notification and result.notification.success),
        'delivery_error': result.claim.delivery_error,
        'entitlements': len(result.entitlements),
    })
