"""Shared fixtures: moto-backed AWS resources, settings and sample files."""

import json
import os
import sys

import boto3
import pytest
from moto import mock_aws

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from shared.config import Settings

REGION = 'us-east-1'
SENDER = 'bonus@ai-born.org'

TABLES = {
    'test-receipts': [('receipt_id', 'HASH')],
    'test-fingerprints': [('fingerprint', 'HASH')],
    'test-verifications': [('receipt_id', 'HASH'), ('attempt_id', 'RANGE')],
    'test-claims': [('receipt_id', 'HASH')],
    'test-entitlements': [('claim_id', 'HASH'), ('entitlement_id', 'RANGE')],
}


@pytest.fixture
def aws_credentials():
    """Mock AWS Credentials for moto."""
    os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
    os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
    os.environ['AWS_SECURITY_TOKEN'] = 'testing'
    os.environ['AWS_SESSION_TOKEN'] = 'testing'
    os.environ['AWS_DEFAULT_REGION'] = REGION
    os.environ['USE_LOCALSTACK'] = 'false'


@pytest.fixture
def aws(aws_credentials):
    with mock_aws():
        yield


@pytest.fixture
def dynamodb(aws):
    """Create the pipeline tables."""
    resource = boto3.resource('dynamodb', region_name=REGION)

    for table_name, key_schema in TABLES.items():
        resource.create_table(
            TableName=table_name,
            KeySchema=[
                {'AttributeName': name, 'KeyType': key_type}
                for name, key_type in key_schema
            ],
            AttributeDefinitions=[
                {'AttributeName': name, 'AttributeType': 'S'}
                for name, _ in key_schema
            ],
            BillingMode='PAY_PER_REQUEST'
        )

    yield resource


@pytest.fixture
def s3(aws):
    """Create mock S3 client with the receipts and bonus asset buckets."""
    client = boto3.client('s3', region_name=REGION)
    client.create_bucket(Bucket='test-receipts-bucket')
    client.create_bucket(Bucket='test-bonus-assets')
    yield client


@pytest.fixture
def sqs(aws):
    client = boto3.client('sqs', region_name=REGION)
    client.create_queue(QueueName='test-receipt-processing')
    yield client


@pytest.fixture
def queue_url(sqs):
    return sqs.get_queue_url(QueueName='test-receipt-processing')['QueueUrl']


@pytest.fixture
def ses(aws):
    client = boto3.client('ses', region_name=REGION)
    client.verify_email_identity(EmailAddress=SENDER)
    yield client


@pytest.fixture
def make_settings():
    """Build Settings for tests, overriding any field by keyword."""
    def _make(**overrides):
        values = {
            'ENVIRONMENT': 'test',
            'RECEIPTS_BUCKET': 'test-receipts-bucket',
            'BONUS_ASSETS_BUCKET': 'test-bonus-assets',
            'RECEIPTS_TABLE': 'test-receipts',
            'FINGERPRINTS_TABLE': 'test-fingerprints',
            'VERIFICATIONS_TABLE': 'test-verifications',
            'CLAIMS_TABLE': 'test-claims',
            'ENTITLEMENTS_TABLE': 'test-entitlements',
            'PROCESSING_QUEUE_URL': 'https://sqs.us-east-1.amazonaws.com/123456789012/test-receipt-processing',
            'BEDROCK_MODEL_ID': 'anthropic.claude-3-haiku-20240307-v1:0',
            'SES_SENDER_EMAIL': SENDER,
            'APP_BASE_URL': 'https://ai-born.org',
            'PROVIDER_BACKOFF_BASE_SECONDS': 0.0,
            'PROVIDER_BACKOFF_MAX_SECONDS': 0.0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings, queue_url):
    return make_settings(PROCESSING_QUEUE_URL=queue_url)


@pytest.fixture
def make_services(settings, dynamodb, s3, sqs, ses):
    """Build the service graph against moto, with optional overrides."""
    from pipeline.wiring import build_services

    def _make(**overrides):
        kwargs = {
            'settings': settings,
            'dynamodb_resource': dynamodb,
            's3_client': s3,
            'sqs_client': sqs,
        }
        kwargs.update(overrides)
        return build_services(**kwargs)

    return _make


@pytest.fixture
def api_event():
    """Build an API Gateway proxy event."""
    def _event(method, path, user_id='user-123', body=None, groups=None, path_params=None, query=None):
        claims = {}
        if user_id:
            claims['sub'] = user_id
        if groups:
            claims['cognito:groups'] = groups

        return {
            'httpMethod': method,
            'path': path,
            'pathParameters': path_params,
            'queryStringParameters': query,
            'headers': {'User-Agent': 'pytest'},
            'body': json.dumps(body) if body is not None else None,
            'requestContext': {
                'authorizer': {'claims': claims},
                'identity': {'sourceIp': '203.0.113.7', 'userAgent': 'pytest'}
            }
        }

    return _event


@pytest.fixture
def png_bytes():
    """A simple 1x1 pixel PNG."""
    return (
        b'\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00'
        b'\x01\x08\x02\x00\x00\x00\x90wS\xde\x00\x00\x00\x0cIDATx\x9cc'
        b'\x00\x01\x00\x00\x05\x00\x01\r\n-\xb4\x00\x00\x00\x00IEND\xaeB`\x82'
    )


@pytest.fixture
def jpeg_bytes():
    return b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9'


@pytest.fixture
def pdf_bytes():
    return (
        b'%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n'
        b'trailer\n<< /Root 1 0 R >>\n%%EOF\n'
    )
