"""taskflow_data.assets — Avatar object cleanup.

The upload path lives outside this package; users only carry the opaque
URL it returned. The one thing done with that URL here is recovering the
S3 object key so the object can be removed when the account goes away.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import unquote, urlparse

from botocore.exceptions import BotoCoreError, ClientError

from taskflow_data.aws_clients import _get_s3
from taskflow_data.config import S3_BUCKET_NAME
from taskflow_data.observability import emit_audit_event

logger = logging.getLogger(__name__)

__all__ = [
    "AvatarStore",
    "avatar_key_from_url",
]


def avatar_key_from_url(url: str, bucket: str = S3_BUCKET_NAME) -> Optional[str]:
    """Object key for an S3 URL in ``bucket``, or None for any other URL.

    Accepts virtual-hosted (``https://<bucket>.s3.<region>.amazonaws.com/<key>``,
    ``https://<bucket>.s3.amazonaws.com/<key>``) and path-style
    (``https://s3.<region>.amazonaws.com/<bucket>/<key>``) URLs.
    """
    if not url:
        return None
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    path = unquote(parsed.path or "").lstrip("/")
    if parsed.scheme not in ("http", "https") or not host.endswith(".amazonaws.com"):
        return None

    if host.startswith(f"{bucket.lower()}.s3"):
        key = path
    elif host.startswith("s3.") or host.startswith("s3-"):
        first, _, rest = path.partition("/")
        if first != bucket:
            return None
        key = rest
    else:
        return None
    return key or None


class AvatarStore:
    def __init__(self, bucket: str = S3_BUCKET_NAME, s3: Any = None, audit_log_group: Optional[str] = None) -> None:
        self._bucket = bucket
        self._s3 = s3
        self._audit_log_group = audit_log_group

    def _client(self):
        return self._s3 if self._s3 is not None else _get_s3()

    def delete_url(self, url: str) -> bool:
        """Delete the object behind ``url``. Never raises; False on failure."""
        key = avatar_key_from_url(url, self._bucket)
        if key is None:
            logger.info("[INFO] Avatar URL is not in bucket %s; nothing to delete", self._bucket)
            return False
        try:
            self._client().delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("[WARNING] Failed to delete avatar s3://%s/%s: %s", self._bucket, key, exc)
            emit_audit_event(
                "avatar_delete_failed",
                extra={"bucket": self._bucket, "key": key, "error": str(exc)},
                mirror_log_group=self._audit_log_group,
            )
            return False
        emit_audit_event(
            "avatar_deleted",
            extra={"bucket": self._bucket, "key": key},
            mirror_log_group=self._audit_log_group,
        )
        return True
