# r2_client.py
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from settings import Settings

logger = logging.getLogger(__name__)


class R2Error(Exception):
    pass


# --- R2 / S3 client ---------------------------------------------------------

def make_r2_client(settings: Settings):
    """
    endpoint_url MUST be the S3 API endpoint (the cloudflarestorage.com host),
    NOT the public/dev domain. Region must be "auto" and path-style is required.
    """
    return boto3.client(
        "s3",
        endpoint_url=settings.r2_endpoint_url,
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        region_name="auto",
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


def public_url_for(public_base: str, key: str) -> str:
    """Public (custom domain / r2.dev) address for `key`; no presigning."""
    return f"{public_base.rstrip('/')}/{key.lstrip('/')}"


class R2Storage:
    def __init__(self, client, bucket: str, public_base: str):
        self._s3 = client
        self.bucket = bucket
        self.public_base = public_base.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "R2Storage":
        return cls(make_r2_client(settings), settings.r2_bucket, settings.r2_public_base)

    def put_bytes(self, key: str, data: bytes, *, content_type: str = "video/mp4") -> None:
        """PUT the object at `key`, replacing whatever is already stored there."""
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise R2Error(f"put_object {self.bucket}/{key} failed: {e}") from e
        logger.debug("Stored %d bytes at %s/%s", len(data), self.bucket, key)

    def public_url(self, key: str) -> str:
        return public_url_for(self.public_base, key)
