import logging
import secrets
import time
from typing import Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.config import (
    AWS_ACCESS_KEY_ID,
    AWS_REGION,
    AWS_SECRET_ACCESS_KEY,
    CHAT_IMAGE_BUCKET,
    CHAT_IMAGE_URL_EXPIRY_SECONDS,
)

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

_s3_clients: Dict[str, object] = {}  # Cache clients by region


class StorageError(Exception):
    pass


def _get_s3_client(region: str = AWS_REGION):
    """Get or create S3 client for a region"""
    if region in _s3_clients:
        return _s3_clients[region]

    if not AWS_ACCESS_KEY_ID or not AWS_SECRET_ACCESS_KEY:
        raise StorageError("AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set")

    session = boto3.session.Session()
    # Signature v4 with virtual-hosted-style addressing
    client = session.client(
        "s3",
        region_name=region,
        aws_access_key_id=AWS_ACCESS_KEY_ID,
        aws_secret_access_key=AWS_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4", s3={"addressing_style": "virtual"}),
    )
    _s3_clients[region] = client
    logger.debug(f"Created S3 client for region: {region}")
    return client


def build_chat_image_path(user_id: int, content_type: str) -> str:
    """Object key for a chat image: {user_id}/{epoch_ms}-{random}.{ext}"""
    ext = ALLOWED_IMAGE_TYPES.get(content_type)
    if not ext:
        raise ValueError(f"Unsupported image type: {content_type}")
    return f"{user_id}/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"


def is_owned_chat_image_path(path: str, user_id: int) -> bool:
    return path.startswith(f"{user_id}/") and ".." not in path


def upload_chat_image(path: str, data: bytes, content_type: str, bucket: str = CHAT_IMAGE_BUCKET) -> str:
    """
    Upload image bytes to the chat image bucket.

    Returns:
        The storage path, which is what image messages carry as content

    Raises:
        StorageError: If the upload fails
    """
    try:
        _get_s3_client().put_object(
            Bucket=bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
            CacheControl="max-age=3600",
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Failed to upload chat image bucket={bucket}, key={path}: {e}")
        raise StorageError("Failed to upload image") from e
    logger.info(f"Uploaded chat image bucket={bucket}, key={path}, bytes={len(data)}")
    return path


def presign_get(
    key: str,
    bucket: str = CHAT_IMAGE_BUCKET,
    expires: int = CHAT_IMAGE_URL_EXPIRY_SECONDS,
) -> Optional[str]:
    """
    Generate a signed read URL for an object. Returns None if signing is not
    possible, so message payloads still go out without an image URL.
    """
    if not bucket or not key:
        return None
    if not AWS_ACCESS_KEY_ID or not AWS_SECRET_ACCESS_KEY:
        logger.warning("AWS credentials not set - cannot generate presigned URLs")
        return None

    try:
        return _get_s3_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires,
        )
    except (ClientError, BotoCoreError, StorageError) as e:
        logger.error(f"Error generating presigned URL for bucket={bucket}, key={key}: {e}")
        return None
