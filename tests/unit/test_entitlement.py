"""Unit tests for bonus claim approval and delivery."""

import pytest
from unittest.mock import Mock
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from bonus.entitlement import EntitlementService
from bonus.models import BONUS_ASSETS, BonusClaim, ClaimStatus, NotificationResult
from receipts.models import Receipt, ReceiptStatus
from shared.exceptions import (
    ConditionFailedError,
    EntitlementGatingError,
    InvalidTransitionError,
    NotFoundError,
)


def make_receipt(status=ReceiptStatus.VERIFIED):
    return Receipt(
        receipt_id='rcpt-1',
        fingerprint='a' * 64,
        user_id='user-123',
        retailer='Amazon',
        storage_key='receipts/receipt-1.png',
        file_url='s3://bucket/receipts/receipt-1.png',
        mime_type='image/png',
        file_size=68,
        status=status,
        submitted_at='2025-03-09T10:00:00'
    )


def make_claim(status=ClaimStatus.PENDING, **overrides):
    values = {
        'receipt_id': 'rcpt-1',
        'claim_id': 'claim-1',
        'user_id': 'user-123',
        'delivery_email': 'reader@example.com',
        'status': status,
        'created_at': '2025-03-09T10:00:00',
    }
    values.update(overrides)
    return BonusClaim(**values)


class TestEntitlementService:
    """Test cases for EntitlementService."""

    @pytest.fixture
    def claims(self):
        claims = Mock()
        claims.get_claim.return_value = make_claim()
        claims.record_delivery.return_value = make_claim(
            ClaimStatus.APPROVED, delivery_tracking_id='msg-1'
        )
        claims.record_delivery_error.return_value = make_claim(
            ClaimStatus.APPROVED, delivery_error='Email rejected'
        )
        return claims

    @pytest.fixture
    def receipts(self):
        receipts = Mock()
        receipts.require_receipt.return_value = make_receipt()
        return receipts

    @pytest.fixture
    def notifier(self):
        notifier = Mock()
        notifier.send.return_value = NotificationResult(success=True, tracking_id='msg-1')
        return notifier

    @pytest.fixture
    def service(self, claims, receipts, notifier):
        storage = Mock()
        storage.get_presigned_url.side_effect = lambda key, expiration: f"https://assets.example.com/{key}?ttl={expiration}"
        return EntitlementService(
            claims=claims,
            receipts=receipts,
            assets_storage=storage,
            notifier=notifier,
            ttl_hours=24,
            app_base_url='https://ai-born.org'
        )

    def test_approve_issues_one_entitlement_per_asset(self, service, claims, notifier):
        """Test approval writes entitlements and sends the download links."""
        result = service.approve_claim('rcpt-1', 'system')

        args = claims.approve_with_entitlements.call_args.args
        assert args[0] == 'rcpt-1'
        assert args[1] == 'system'
        assert len(args[2]) == len(BONUS_ASSETS)
        assert len({entitlement.issuance_id for entitlement in args[2]}) == 1
        assert all('ttl=86400' in entitlement.download_url for entitlement in args[2])

        notifier.send.assert_called_once()
        recipient, template_id, payload = notifier.send.call_args.args
        assert recipient == 'reader@example.com'
        assert template_id == 'bonus-pack-delivery'
        assert len(payload['downloads']) == len(BONUS_ASSETS)

        claims.record_delivery.assert_called_once_with('rcpt-1', 'msg-1')
        assert result.claim.delivery_tracking_id == 'msg-1'
        assert set(result.download_urls()) == {asset.asset_id for asset in BONUS_ASSETS}

    def test_unverified_receipt_is_gated(self, service, receipts, claims, notifier):
        """Test that nothing is issued for a receipt that is not VERIFIED."""
        receipts.require_receipt.return_value = make_receipt(ReceiptStatus.PENDING)

        with pytest.raises(EntitlementGatingError):
            service.approve_claim('rcpt-1', 'system')

        claims.approve_with_entitlements.assert_not_called()
        notifier.send.assert_not_called()

    def test_rejected_receipt_is_gated(self, service, receipts, claims):
        receipts.require_receipt.return_value = make_receipt(ReceiptStatus.REJECTED)

        with pytest.raises(EntitlementGatingError):
            service.approve_claim('rcpt-1', 'reviewer-1')

        claims.approve_with_entitlements.assert_not_called()

    def test_already_approved_is_noop(self, service, claims, notifier):
        claims.get_claim.return_value = make_claim(ClaimStatus.APPROVED, delivery_tracking_id='msg-0')

        result = service.approve_claim('rcpt-1', 'system')

        assert result.claim.status == ClaimStatus.APPROVED
        assert result.entitlements == []
        claims.approve_with_entitlements.assert_not_called()
        notifier.send.assert_not_called()

    def test_rejected_claim_cannot_be_approved(self, service, claims):
        claims.get_claim.return_value = make_claim(ClaimStatus.REJECTED)

        with pytest.raises(InvalidTransitionError):
            service.approve_claim('rcpt-1', 'system')

    def test_missing_claim(self, service, claims):
        claims.get_claim.return_value = None

        with pytest.raises(NotFoundError):
            service.approve_claim('rcpt-1', 'system')

    def test_concurrent_approval_is_noop(self, service, claims, notifier):
        claims.approve_with_entitlements.side_effect = ConditionFailedError()
        claims.get_claim.side_effect = [make_claim(), make_claim(ClaimStatus.APPROVED)]

        result = service.approve_claim('rcpt-1', 'system')

        assert result.claim.status == ClaimStatus.APPROVED
        notifier.send.assert_not_called()

    def test_transaction_gate_failure(self, service, claims):
        claims.approve_with_entitlements.side_effect = ConditionFailedError()

        with pytest.raises(EntitlementGatingError):
            service.approve_claim('rcpt-1', 'system')

    def test_delivery_failure_keeps_approval(self, service, claims, notifier):
        """Test that a failed send is recorded without undoing the approval."""
        notifier.send.return_value = NotificationResult(success=False, error='Email rejected')

        result = service.approve_claim('rcpt-1', 'system')

        claims.approve_with_entitlements.assert_called_once()
        claims.record_delivery_error.assert_called_once_with('rcpt-1', 'Email rejected')
        claims.record_delivery.assert_not_called()
        assert result.claim.status == ClaimStatus.APPROVED
        assert result.notification.success is False

    def test_notifier_exception_is_recorded(self, service, claims, notifier):
        notifier.send.side_effect = RuntimeError('boom')

        service.approve_claim('rcpt-1', 'system')

        claims.record_delivery_error.assert_called_once_with('rcpt-1', 'boom')

    def test_issue_without_claim(self, service, claims):
        claims.get_claim.return_value = None

        assert service.issue_for_receipt('rcpt-1', 'system') is None
        claims.approve_with_entitlements.assert_not_called()

    def test_open_claim_is_idempotent(self, service, claims):
        existing = make_claim()
        claims.create_claim.side_effect = ConditionFailedError()
        claims.get_claim.return_value = existing

        claim = service.open_claim(make_receipt(ReceiptStatus.PENDING), 'Reader@Example.com')

        assert claim is existing

    def test_open_claim_normalizes_email(self, service, claims):
        claims.create_claim.side_effect = lambda claim: claim

        claim = service.open_claim(make_receipt(ReceiptStatus.PENDING), 'Reader@Example.com')

        assert claim.delivery_email == 'reader@example.com'
        assert claim.status == ClaimStatus.PENDING

    def test_resend_requires_approved_claim(self, service):
        with pytest.raises(EntitlementGatingError):
            service.resend_delivery('rcpt-1', 'reviewer-1')

    def test_resend_issues_fresh_links(self, service, claims, notifier):
        claims.get_claim.return_value = make_claim(ClaimStatus.APPROVED)

        result = service.resend_delivery('rcpt-1', 'reviewer-1')

        claims.append_entitlements.assert_called_once()
        assert len(result.entitlements) == len(BONUS_ASSETS)
        notifier.send.assert_called_once()
