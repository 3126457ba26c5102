"""
AWS integrations layer: client factory, S3 attachment storage, DB secrets.
"""
from app.aws.client import get_aws_client
from app.aws.secrets import get_secret, load_db_credentials

__all__ = [
    "get_aws_client",
    "get_secret",
    "load_db_credentials",
]
