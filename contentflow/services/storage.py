from __future__ import annotations

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from contentflow.core.errors import NotFoundError, ServiceUnavailableError, TransientNetworkError


def _translate(e: Exception, what: str) -> Exception:
    if isinstance(e, EndpointConnectionError):
        return TransientNetworkError(f"Storage unreachable while {what}: {e}")
    if isinstance(e, ClientError):
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in ("404", "NoSuchKey", "NoSuchBucket"):
            return NotFoundError(f"Storage object missing while {what}: {code}")
        return ServiceUnavailableError(f"Storage error while {what}: {code or e}")
    return ServiceUnavailableError(f"Storage error while {what}: {e}")


class S3AssetStorage:
    """
    Asset storage on any S3-compatible endpoint (AWS, MinIO, DO Spaces).

    Keys are laid out per job: jobs/<job_id>/<name>.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        public_endpoint: str | None = None,
        region: str = "us-east-1",
        access_key: str | None = None,
        secret_key: str | None = None,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.public_endpoint = public_endpoint or endpoint_url
        self.region = region
        self._client = client
        self._access_key = access_key
        self._secret_key = secret_key

    @property
    def client(self):
        if self._client is None:
            session = boto3.session.Session(
                aws_access_key_id=self._access_key,
                aws_secret_access_key=self._secret_key,
                region_name=self.region,
            )
            self._client = session.client(
                "s3",
                endpoint_url=self.endpoint_url,  # e.g. http://127.0.0.1:9000
                config=BotoConfig(
                    s3={"addressing_style": "path"},
                    signature_version="s3v4",
                ),
            )
        return self._client

    @staticmethod
    def job_prefix(job_id: int) -> str:
        return f"jobs/{job_id}"

    def object_url(self, key: str) -> str:
        if self.public_endpoint:
            return f"{self.public_endpoint.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def create_folder(self, job_id: int) -> str:
        """Write a folder marker; idempotent. Returns the folder URL."""
        key = f"{self.job_prefix(job_id)}/"
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=b"")
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, f"creating folder for job {job_id}") from e
        return self.object_url(key)

    def put_bytes(self, key: str, data: bytes, content_type: str | None = None) -> str:
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, f"uploading {key}") from e
        return self.object_url(key)

    def ping(self) -> bool:
        self.client.head_bucket(Bucket=self.bucket)
        return True
