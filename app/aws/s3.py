"""
S3 storage for chat attachments.
"""
import logging
from typing import Optional
from urllib.parse import quote

from app.aws.client import get_aws_client
from app.core.config import settings

logger = logging.getLogger(__name__)

# Keys embed a fresh upload id, so objects never change
_CACHE_CONTROL = "public, max-age=31536000, immutable"


def get_s3_client():
    return get_aws_client("s3", region_name=settings.s3_region)


def build_public_url(key: str) -> str:
    """Virtual-hosted URL; the bucket policy must allow s3:GetObject."""
    return f"https://{settings.S3_BUCKET_NAME}.s3.{settings.s3_region}.amazonaws.com/{quote(key)}"


def upload_to_s3(
    key: str,
    body: bytes,
    content_type: str,
    file_name: Optional[str] = None,
) -> str:
    """
    Store an attachment under `key` and return its public URL.

    `file_name` becomes the download name browsers offer for the object.
    No ACL is sent; buckets with owner-enforced ownership reject them.

    Raises:
        ValueError: S3_BUCKET_NAME is not configured.
        botocore.exceptions.ClientError: The put was refused.
    """
    if not settings.S3_BUCKET_NAME:
        raise ValueError("S3_BUCKET_NAME not configured")

    extra = {"CacheControl": _CACHE_CONTROL}
    if file_name:
        extra["ContentDisposition"] = f"inline; filename*=UTF-8''{quote(file_name)}"
    get_s3_client().put_object(
        Bucket=settings.S3_BUCKET_NAME,
        Key=key,
        Body=body,
        ContentType=content_type,
        **extra,
    )
    url = build_public_url(key)
    logger.info(f"Stored attachment s3://{settings.S3_BUCKET_NAME}/{key}")
    return url
