"""
S3 operations utilities for Lambda handlers.

This module opens S3 objects as byte streams for the line reader and
uploads processing summaries.
"""

import json
import logging
from typing import Any, Dict

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# Configure S3 client with timeouts to prevent infinite hangs
s3_config = Config(
    retries={
        'max_attempts': 1,  # 1 attempt total (no retries)
        'mode': 'standard'
    },
    connect_timeout=10,  # 10 seconds to establish connection
    read_timeout=60      # 60 seconds max between streamed chunks
)

# Initialize S3 client at module level (thread-safe, reused across invocations)
s3_client = boto3.client('s3', config=s3_config)
logger.info("S3 client initialized with timeouts: connect=10s, read=60s, max_attempts=1")


def open_object_stream(bucket: str, key: str) -> Any:
    """
    Open an S3 object for streaming reads.

    The body is returned unread; callers pull it chunk by chunk with
    read(n) and close it when done.

    Args:
        bucket: S3 bucket name
        key: S3 object key

    Returns:
        botocore StreamingBody for the object

    Raises:
        ValueError: If bucket/key is empty or the object does not exist
        ClientError: For any other S3 failure

    Example:
        >>> body = open_object_stream("my-bucket", "exports/2025/11/12/users.csv")
        >>> first_chunk = body.read(65536)
    """
    if not bucket:
        raise ValueError("S3 bucket name cannot be empty")
    if not key:
        raise ValueError("S3 object key cannot be empty")

    try:
        response = s3_client.get_object(Bucket=bucket, Key=key)
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', '')
        if error_code == 'NoSuchKey':
            logger.error(f"S3 object not found: s3://{bucket}/{key}")
            raise ValueError(f"Object not found in S3: {key}")
        elif error_code == 'NoSuchBucket':
            logger.error(f"S3 bucket not found: {bucket}")
            raise ValueError(f"S3 bucket not found: {bucket}")
        else:
            logger.error(f"Failed to open s3://{bucket}/{key}: {e}")
            raise

    logger.info(
        f"Opened S3 object stream: s3://{bucket}/{key}, "
        f"size={response.get('ContentLength', 'unknown')} bytes"
    )
    return response['Body']


def upload_line_summary(bucket: str, key: str, summary: Dict[str, Any]) -> int:
    """
    Write the line statistics of one object as a JSON document.

    Non-ASCII sample lines are stored as UTF-8, not as escapes.

    Args:
        bucket: Results bucket
        key: Summary key, usually `<prefix><environment>/<source key>.json`
        summary: Statistics payload (line_count, byte_count, sample_lines, ...)

    Returns:
        Size of the uploaded document in bytes

    Raises:
        ClientError: If PutObject fails
        ValueError: If bucket or key is empty, or summary is not a dict
    """
    if not bucket:
        raise ValueError("S3 bucket name cannot be empty")
    if not key:
        raise ValueError("S3 object key cannot be empty")
    if not isinstance(summary, dict):
        raise ValueError(f"Line summary must be a dict, got {type(summary).__name__}")

    body = json.dumps(summary, ensure_ascii=False).encode('utf-8')

    try:
        s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body,
            ContentType='application/json'
        )
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        logger.error(
            f"Line summary not written to s3://{bucket}/{key} "
            f"({summary.get('line_count', '?')} line(s)): {error_code}"
        )
        raise

    logger.info(
        f"Wrote line summary s3://{bucket}/{key}: "
        f"{summary.get('line_count', '?')} line(s), {len(body)} bytes"
    )
    return len(body)
