"""S3 utilities and helper functions."""

import os
import boto3
from typing import Optional, Dict, Any
from botocore.exceptions import ClientError
import logging

from .exceptions import StorageError

logger = logging.getLogger(__name__)


class S3Client:
    """S3 client wrapper with common operations."""

    def __init__(self, bucket_name: str, client: Optional[Any] = None):
        """
        Initialize S3 client.

        Args:
            bucket_name: Name of the S3 bucket
            client: Optional pre-built boto3 S3 client
        """
        self.bucket_name = bucket_name

        if client is not None:
            self.s3 = client
            return

        # Support for LocalStack
        endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
        if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
            self.s3 = boto3.client('s3', endpoint_url=endpoint_url)
        else:
            self.s3 = boto3.client('s3')

    def upload_file(
        self,
        file_content: bytes,
        key: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Upload a file to S3.

        Args:
            file_content: File content as bytes
            key: S3 object key
            content_type: Optional content type
            metadata: Optional metadata

        Returns:
            S3 object key

        Raises:
            StorageError: If the upload fails
        """
        try:
            kwargs = {
                'Bucket': self.bucket_name,
                'Key': key,
                'Body': file_content,
                'ServerSideEncryption': 'AES256'
            }

            if content_type:
                kwargs['ContentType'] = content_type

            if metadata:
                kwargs['Metadata'] = metadata

            self.s3.put_object(**kwargs)
            logger.info(f"Successfully uploaded file to s3://{self.bucket_name}/{key}")
            return key
        except ClientError as e:
            logger.error(f"Error uploading file to S3: {e}")
            raise StorageError(f"Failed to upload file: {str(e)}")

    def delete_file(self, key: str) -> None:
        """
        Delete a file from S3.

        Args:
            key: S3 object key

        Raises:
            StorageError: If the deletion fails
        """
        try:
            self.s3.delete_object(Bucket=self.bucket_name, Key=key)
            logger.info(f"Successfully deleted file s3://{self.bucket_name}/{key}")
        except ClientError as e:
            logger.error(f"Error deleting file from S3: {e}")
            raise StorageError(f"Failed to delete file: {str(e)}")

    def get_presigned_url(
        self,
        key: str,
        expiration: int = 3600,
        operation: str = 'get_object'
    ) -> str:
        """
        Generate a presigned URL for an S3 object.

        Args:
            key: S3 object key
            expiration: URL expiration time in seconds (default: 1 hour)
            operation: S3 operation (default: 'get_object')

        Returns:
            Presigned URL

        Raises:
            StorageError: If URL generation fails
        """
        try:
            url = self.s3.generate_presigned_url(
                operation,
                Params={'Bucket': self.bucket_name, 'Key': key},
                ExpiresIn=expiration
            )
            return url
        except ClientError as e:
            logger.error(f"Error generating presigned URL: {e}")
            raise StorageError(f"Failed to generate presigned URL: {str(e)}")

    def file_exists(self, key: str) -> bool:
        """
        Check if a file exists in S3.

        Args:
            key: S3 object key

        Returns:
            True if file exists, False otherwise
        """
        try:
            self.s3.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError:
            return False

    def object_url(self, key: str, public_base_url: Optional[str] = None) -> str:
        """
        Build the durable URL for an object.

        Args:
            key: S3 object key
            public_base_url: Optional CDN or custom domain in front of the bucket

        Returns:
            Public URL when a base URL is configured, otherwise an s3:// URI
        """
        if public_base_url:
            return f"{public_base_url.rstrip('/')}/{key}"
        return f"s3://{self.bucket_name}/{key}"
