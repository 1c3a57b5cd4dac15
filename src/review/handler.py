"""Lambda handler for the reviewer workflow."""

import json
import os
import logging
from typing import Dict, Any
import sys

# Add parent directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.auth import require_reviewer
from shared.response import success_response, error_response, exception_response
from shared.validators import sanitize_string, validate_required_fields, validate_review_action
from shared.exceptions import ReceiptPipelineException, ValidationError
from pipeline.wiring import get_services

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))

MAX_QUEUE_PAGE = 100


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for review operations.

    Handles:
    - GET /review/queue - Receipts waiting for a reviewer
    - POST /review/{id}/decision - Approve or reject a receipt

    Args:
        event: Lambda event
        context: Lambda context

    Returns:
        API Gateway response
    """
    try:
        logger.info(f"Request: {event.get('httpMethod')} {event.get('path')}")

        reviewer_id = require_reviewer(event)

        http_method = event.get('httpMethod')
        path = event.get('path') or ''

        if path == '/review/queue' and http_method == 'GET':
            return handle_queue(event)
        elif path.startswith('/review/') and path.endswith('/decision') and http_method == 'POST':
            return handle_decision(event, reviewer_id)
        else:
            return error_response("Route not found", status_code=404)

    except ReceiptPipelineException as e:
        logger.warning(f"Request rejected: {e.error_code} {e.message}")
        return exception_response(e)
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return error_response("Internal server error", status_code=500)


def handle_queue(event: Dict[str, Any]) -> Dict[str, Any]:
    query_params = event.get('queryStringParameters') or {}
    try:
        limit = int(query_params.get('limit', 50))
    except ValueError:
        raise ValidationError("limit must be an integer")

    receipts = get_services().review.list_review_queue(limit=max(1, min(limit, MAX_QUEUE_PAGE)))

    return success_response(data={
        'receipts': receipts,
        'count': len(receipts)
    })


def handle_decision(event: Dict[str, Any], reviewer_id: str) -> Dict[str, Any]:
    """
    Handle a reviewer verdict.

    Args:
        event: Lambda event
        reviewer_id: Reviewer user ID

    Returns:
        API Gateway response
    """
    path_params = event.get('pathParameters') or {}
    receipt_id = path_params.get('id')
    if not receipt_id:
        raise ValidationError("Receipt ID is required")

    try:
        body = json.loads(event.get('body') or '{}')
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")

    validate_required_fields(body, ['action'])
    action = validate_review_action(body['action'])
    notes = sanitize_string(body['notes'], max_length=2000) if body.get('notes') else None

    result = get_services().review.apply_reviewer_decision(receipt_id, action, reviewer_id, notes)

    message = "Receipt approved" if action == "approve" else "Receipt rejected"
    return success_response(data=result, message=message)
