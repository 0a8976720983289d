import logging
import os
from typing import Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from tenacity import retry, stop_after_attempt, wait_exponential

from helpers_pathways.constants import AWS_REGION

# Configure boto3 with retries
boto3_config = Config(
    retries=dict(
        max_attempts=3,
        mode='adaptive'
    ),
    connect_timeout=5,
    read_timeout=10,
    region_name=AWS_REGION
)

_s3_client = None


def get_s3_client():
    """Return the shared S3 client, creating it on first use."""
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client("s3", config=boto3_config)
    return _s3_client


def set_s3_client(client) -> None:
    """Replace the shared S3 client (used by tests and by callers with their own session)."""
    global _s3_client
    _s3_client = client


def is_s3_path(path: Optional[str]) -> bool:
    return bool(path) and str(path).startswith("s3://")


def parse_s3_path(s3_uri: str) -> Tuple[str, str]:
    """Helper to split s3://bucket/key path"""
    if not is_s3_path(s3_uri):
        raise ValueError(f"Invalid S3 path: {s3_uri}")
    parts = s3_uri[5:].split("/", 1)
    return parts[0], parts[1] if len(parts) > 1 else ""


def s3_exists(s3_path: str) -> bool:
    bucket, key = parse_s3_path(s3_path)
    try:
        get_s3_client().head_object(Bucket=bucket, Key=key)
        return True
    except ClientError as e:
        if e.response["Error"]["Code"] in ["404", "403", "NoSuchKey"]:
            return False
        raise


@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=4, max=10))
def upload_file_to_s3(local_path: str, s3_path: str, logger: Optional[logging.Logger] = None) -> None:
    """Upload a local file to s3://bucket/key."""
    bucket, key = parse_s3_path(s3_path)
    try:
        with open(local_path, "rb") as f:
            get_s3_client().upload_fileobj(f, bucket, key)
        if logger:
            logger.info(f"✓ Uploaded {os.path.basename(local_path)} to {s3_path}")
    except Exception as e:
        if logger:
            logger.error(f"✗ Error uploading {local_path} to {s3_path}: {str(e)}")
        raise


@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=4, max=10))
def save_to_s3_text(text: str, s3_path: str, logger: Optional[logging.Logger] = None) -> None:
    """Save text data to S3."""
    bucket, key = parse_s3_path(s3_path)
    try:
        get_s3_client().put_object(
            Bucket=bucket,
            Key=key,
            Body=text.encode('utf-8'),
            ContentType='text/plain'
        )
        if logger:
            logger.info(f"✓ Saved text file to {s3_path}")
    except Exception as e:
        if logger:
            logger.error(f"✗ Error saving text file to {s3_path}: {str(e)}")
        raise
