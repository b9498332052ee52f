"""taskflow_data.aws_clients — boto3 client construction.

The DynamoDB client is built on demand by ``StoreClient.open`` and owned by
that handle. The side-channel clients (S3 for avatar cleanup, CloudWatch
Logs for the audit mirror) are lazy singletons: they are only needed by
fire-and-forget paths and cost nothing until first use.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from taskflow_data.config import DYNAMODB_ENDPOINT_URL, DYNAMODB_MAX_ATTEMPTS, DYNAMODB_REGION, S3_REGION

# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _make_ddb(
    region: Optional[str] = None,
    endpoint_url: Optional[str] = None,
    max_attempts: Optional[int] = None,
):
    """Create a new low-level DynamoDB client."""
    return boto3.client(
        "dynamodb",
        region_name=region or DYNAMODB_REGION,
        endpoint_url=endpoint_url or DYNAMODB_ENDPOINT_URL or None,
        config=Config(retries={"max_attempts": max_attempts or DYNAMODB_MAX_ATTEMPTS, "mode": "standard"}),
    )


# ---------------------------------------------------------------------------
# Side-channel singletons
# ---------------------------------------------------------------------------

_s3 = None
_logs = None


def _get_s3(region: Optional[str] = None):
    """Get (or create) the S3 client singleton."""
    global _s3
    if _s3 is None:
        _s3 = boto3.client(
            "s3",
            region_name=region or S3_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _s3


def _get_logs(region: Optional[str] = None):
    """Get (or create) the CloudWatch Logs client singleton."""
    global _logs
    if _logs is None:
        _logs = boto3.client(
            "logs",
            region_name=region or DYNAMODB_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _logs
