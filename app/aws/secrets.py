"""
Database credentials from AWS Secrets Manager.

The secret is the JSON document RDS writes for a managed master user:
host, port, dbname/database, username, password.
"""
import json
import logging
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from app.aws.client import get_aws_client

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = ("host", "username", "password")


def get_secret(secret_name: str, region_name: Optional[str] = None) -> Dict[str, Any]:
    """Fetch a secret and parse its SecretString as JSON."""
    client = get_aws_client("secretsmanager", region_name=region_name)
    try:
        response = client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        logger.error(f"Could not read secret {secret_name}: {e.response['Error']['Code']}")
        raise
    return json.loads(response["SecretString"])


def load_db_credentials(secret_name: str, region_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Connection parts for the chat database.

    Raises:
        KeyError: The secret lacks host, username or password.
    """
    secret = get_secret(secret_name, region_name=region_name)
    missing = [k for k in _REQUIRED_KEYS if not secret.get(k)]
    if missing:
        raise KeyError(f"Secret {secret_name} is missing {', '.join(missing)}")
    creds = {
        "host": secret["host"],
        "port": int(secret.get("port") or 5432),
        "database": secret.get("database") or secret.get("dbname") or "postgres",
        "username": secret["username"],
        "password": secret["password"],
    }
    logger.info(f"Loaded database credentials for {creds['host']}:{creds['port']}/{creds['database']}")
    return creds
