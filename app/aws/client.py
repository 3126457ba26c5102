"""
AWS client factory - one place where boto3 clients are built.
"""
from typing import Optional

import boto3

from app.core.config import settings


def get_aws_client(service_name: str, region_name: Optional[str] = None):
    """
    boto3 client for `service_name` ('s3', 'secretsmanager').

    AWS_ENDPOINT_URL points every client at a local stand-in such as
    LocalStack; region defaults to AWS_REGION.
    """
    region = region_name or settings.AWS_REGION
    if settings.AWS_ENDPOINT_URL:
        return boto3.client(service_name, region_name=region, endpoint_url=settings.AWS_ENDPOINT_URL)
    return boto3.client(service_name, region_name=region)
