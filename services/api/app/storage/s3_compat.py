import io
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..settings import settings

logger = logging.getLogger("fridgemate.storage.s3")


class S3CompatStore:
    """Upload store backed by an S3-compatible bucket (MinIO, R2, S3)."""

    def __init__(
        self,
        endpoint_url: str,
        region_name: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
    ):
        self.bucket = bucket
        self.s3 = boto3.client(
            service_name="s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region_name,
        )

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self.s3.put_object(Bucket=self.bucket, Key=key, Body=io.BytesIO(data), ContentType=content_type)
        return key

    def get_bytes(self, key: str) -> bytes:
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise FileNotFoundError(f"s3://{self.bucket}/{key}") from e
        return obj["Body"].read()

    def delete(self, key: str) -> bool:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to delete s3://{self.bucket}/{key}: {e}")
            return False


def get_store() -> S3CompatStore:
    return S3CompatStore(
        endpoint_url=settings.object_store_endpoint,
        region_name=settings.object_store_region,
        access_key_id=settings.object_store_access_key_id,
        secret_access_key=settings.object_store_secret_access_key,
        bucket=settings.object_store_bucket,
    )
