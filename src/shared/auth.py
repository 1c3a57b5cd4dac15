"""Caller identity from the API Gateway Cognito authorizer."""

import re
from typing import Any, Dict, List, Optional

from .exceptions import AuthenticationError, AuthorizationError

REVIEWERS_GROUP = 'reviewers'


def _claims(event: Dict[str, Any]) -> Dict[str, Any]:
    request_context = event.get('requestContext') or {}
    authorizer = request_context.get('authorizer') or {}
    return authorizer.get('claims') or {}


def get_user_id(event: Dict[str, Any]) -> Optional[str]:
    """
    Extract user ID from Cognito authorizer claims.

    Args:
        event: Lambda event

    Returns:
        User ID (sub claim)
    """
    return _claims(event).get('sub')


def require_user_id(event: Dict[str, Any]) -> str:
    user_id = get_user_id(event)
    if not user_id:
        raise AuthenticationError("Unauthorized")
    return user_id


def get_user_groups(event: Dict[str, Any]) -> List[str]:
    """
    Cognito groups of the caller.

    API Gateway passes ``cognito:groups`` either as a list or flattened to a
    string such as ``"[reviewers admins]"`` or ``"reviewers,admins"``.
    """
    groups = _claims(event).get('cognito:groups')
    if not groups:
        return []
    if isinstance(groups, list):
        return [str(group) for group in groups]
    return [group for group in re.split(r'[\s,\[\]]+', str(groups)) if group]


def require_reviewer(event: Dict[str, Any]) -> str:
    """
    Return the caller's user id if they are a reviewer.

    Raises:
        AuthenticationError: If there is no authenticated caller
        AuthorizationError: If the caller is not in the reviewers group
    """
    user_id = require_user_id(event)
    if REVIEWERS_GROUP not in get_user_groups(event):
        raise AuthorizationError("Reviewer access required")
    return user_id


def get_source_ip(event: Dict[str, Any]) -> Optional[str]:
    identity = (event.get('requestContext') or {}).get('identity') or {}
    return identity.get('sourceIp')


def get_user_agent(event: Dict[str, Any]) -> Optional[str]:
    identity = (event.get('requestContext') or {}).get('identity') or {}
    headers = event.get('headers') or {}
    return identity.get('userAgent') or headers.get('User-Agent') or headers.get('user-agent')
