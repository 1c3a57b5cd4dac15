"""Lambda handler for receipt submission and status."""

import json
import os
import logging
from typing import Dict, Any
import sys

# Add parent directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.auth import get_source_ip, get_user_agent, require_user_id
from shared.response import success_response, error_response, exception_response
from shared.validators import (
    decode_base64_file,
    sanitize_string,
    validate_email,
    validate_format,
    validate_purchase_date,
    validate_required_fields,
)
from shared.exceptions import ReceiptPipelineException, ValidationError
from receipts.models import SubmissionRequest
from pipeline.wiring import get_services

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for receipt operations.

    Handles:
    - POST /receipts/upload - Submit a receipt
    - GET /receipts/{id} - Poll receipt status

    Args:
        event: Lambda event
        context: Lambda context

    Returns:
        API Gateway response
    """
    try:
        logger.info(f"Request: {event.get('httpMethod')} {event.get('path')}")

        user_id = require_user_id(event)

        http_method = event.get('httpMethod')
        path = event.get('path') or ''

        if path == '/receipts/upload' and http_method == 'POST':
            return handle_upload(event, user_id)
        elif path.startswith('/receipts/') and http_method == 'GET':
            return handle_get(event, user_id)
        else:
            return error_response("Route not found", status_code=404)

    except ReceiptPipelineException as e:
        logger.warning(f"Request rejected: {e.error_code} {e.message}")
        return exception_response(e)
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return error_response("Internal server error", status_code=500)


def parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    try:
        body = json.loads(event.get('body') or '{}')
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def handle_upload(event: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """
    Handle receipt upload.

    Args:
        event: Lambda event
        user_id: User ID

    Returns:
        API Gateway response
    """
    body = parse_body(event)

    validate_required_fields(body, ['file_data', 'filename', 'content_type', 'retailer'])

    file_bytes = decode_base64_file(body['file_data'])

    declared_size = body.get('file_size')
    if declared_size is not None:
        try:
            declared_size = int(declared_size)
        except (TypeError, ValueError):
            raise ValidationError("file_size must be an integer")

    order_number = body.get('order_number')
    request = SubmissionRequest(
        submitter_id=user_id,
        declared_retailer=sanitize_string(body['retailer'], max_length=200),
        declared_order_number=sanitize_string(order_number, max_length=100) if order_number else None,
        declared_format=validate_format(body.get('format')),
        declared_purchase_date=validate_purchase_date(body.get('purchase_date')),
        file_bytes=file_bytes,
        declared_mime_type=str(body['content_type']),
        declared_filename=sanitize_string(body['filename'], max_length=255),
        declared_size=declared_size,
        source_ip=get_source_ip(event),
        user_agent=get_user_agent(event),
        delivery_email=validate_email(body['delivery_email']) if body.get('delivery_email') else None
    )

    result = get_services().submission.submit(request)

    logger.info(f"Receipt uploaded successfully: {result.receipt_id}")

    return success_response(
        data=result,
        message="Receipt uploaded successfully. Verification will begin shortly.",
        status_code=201
    )


def handle_get(event: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """
    Handle receipt status poll.

    Args:
        event: Lambda event
        user_id: User ID

    Returns:
        API Gateway response
    """
    path_params = event.get('pathParameters') or {}
    receipt_id = path_params.get('id')

    if not receipt_id:
        raise ValidationError("Receipt ID is required")

    status = get_services().submission.get_receipt_status(receipt_id, user_id)
    return success_response(data=status)
