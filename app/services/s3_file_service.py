"""S3FileService provides S3-backed file operations for statement uploads."""

import boto3
from botocore.exceptions import ClientError

from app.core.settings import Settings, get_settings

PRESIGNED_URL_TTL = 3600


class S3FileService:
    """Statement objects in an S3-compatible bucket; the bucket is created on first use."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize S3FileService and ensure the bucket exists."""
        settings = settings or get_settings()
        self.s3 = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
        )
        self.bucket = settings.s3_bucket
        self.prefix = settings.s3_folder_prefix
        self.ensure_bucket()

    def ensure_bucket(self) -> None:
        """Ensure the S3 bucket exists, create if not present."""
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except ClientError:
            self.s3.create_bucket(Bucket=self.bucket)

    def upload_fileobj(self, key: str, data: bytes, content_type: str | None = None) -> None:
        """Upload a file object to S3 under the given key."""
        extra = {"ContentType": content_type} if content_type else {}
        self.s3.put_object(Bucket=self.bucket, Key=str(key), Body=data, **extra)

    def download_fileobj(self, key: str) -> bytes:
        """Download a file object from S3 by key."""
        obj = self.s3.get_object(Bucket=self.bucket, Key=str(key))
        return obj["Body"].read()

    def presigned_url(self, key: str) -> str:
        """Generate a signed GET URL that expires in one hour."""
        return self.s3.generate_presigned_url(
            "get_object", Params={"Bucket": self.bucket, "Key": str(key)}, ExpiresIn=PRESIGNED_URL_TTL
        )
