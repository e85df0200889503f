"""
Image hosting uploaders.
Turn the rendered PNG into a public URL for the in-app message. S3 is tried
first when a bucket is configured, then ImgBB.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.errors import UploadError

logger = logging.getLogger(__name__)

IMGBB_UPLOAD_URL = 'https://api.imgbb.com/1/upload'
DEFAULT_AWS_REGION = 'us-east-1'


class ImgBBUploader:
    """Upload collaborator: bytes in, public URL out, UploadError otherwise."""

    def __init__(self, api_key: str, session: Optional[requests.Session] = None,
                 upload_url: str = IMGBB_UPLOAD_URL, timeout: float = 60):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.upload_url = upload_url
        self.timeout = timeout

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=20),
           retry=retry_if_exception_type(requests.exceptions.ConnectionError), reraise=True)
    def _post(self, png_bytes: bytes, filename: str) -> requests.Response:
        return self.session.post(
            self.upload_url,
            data={'key': self.api_key},
            files={'image': (filename, png_bytes, 'image/png')},
            headers={'Accept': 'application/json'},
            timeout=self.timeout,
        )

    def upload(self, png_bytes: bytes, filename: str = 'trending-tokens.png') -> str:
        if not self.api_key:
            raise UploadError("IMGBB_API_KEY is not configured")
        if not png_bytes:
            raise UploadError("Nothing to upload: image is empty")

        logger.info(f"☁️ Uploading {len(png_bytes)} byte image to ImgBB...")
        try:
            response = self._post(png_bytes, filename)
        except requests.exceptions.RequestException as e:
            raise UploadError(f"ImgBB upload failed: {type(e).__name__}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise UploadError(f"ImgBB API error ({response.status_code}): {response.text[:300]}")

        try:
            body = response.json()
        except ValueError as e:
            raise UploadError(f"ImgBB returned a non-JSON body: {e}") from e

        data = body.get('data') or {}
        url = data.get('display_url') or data.get('url')
        if not body.get('success') or not url:
            raise UploadError(f"No usable URL in ImgBB response: {str(body)[:300]}")

        logger.info(f"✅ Image uploaded successfully: {url}")
        return url


class S3Uploader:
    """Publishes the image as a public-read object named after the current UTC day."""

    def __init__(self, bucket: str, region: str = DEFAULT_AWS_REGION, client=None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.bucket = bucket
        self.region = region or DEFAULT_AWS_REGION
        self._client = client
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def client(self):
        if self._client is None:
            # credentials come from the standard AWS environment variables
            self._client = boto3.client('s3', region_name=self.region)
        return self._client

    def object_key(self) -> str:
        return f"daily-tokens-{self.clock():%Y-%m-%d}.png"

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(self, png_bytes: bytes, filename: Optional[str] = None) -> str:
        if not self.bucket:
            raise UploadError("S3_BUCKET_NAME is not configured")
        if not png_bytes:
            raise UploadError("Nothing to upload: image is empty")

        key = filename or self.object_key()
        logger.info(f"☁️ Uploading {len(png_bytes)} byte image to s3://{self.bucket}/{key}...")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=png_bytes,
                ContentType='image/png',
                ACL='public-read',
            )
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"S3 upload failed: {type(e).__name__}: {e}") from e

        url = self.public_url(key)
        logger.info(f"✅ Image uploaded successfully: {url}")
        return url


class ChainedUploader:
    """Tries each uploader in order and returns the first URL."""

    def __init__(self, uploaders: List):
        self.uploaders = list(uploaders)

    def upload(self, png_bytes: bytes) -> str:
        errors = []
        for uploader in self.uploaders:
            name = type(uploader).__name__
            try:
                return uploader.upload(png_bytes)
            except UploadError as e:
                logger.warning(f"⚠️ {name} failed: {e}")
                errors.append(f"{name}: {e}")
        raise UploadError("; ".join(errors) or "No image host configured")


def build_uploader(imgbb_api_key: str = '', s3_bucket: str = '',
                   aws_region: str = DEFAULT_AWS_REGION, s3_client=None) -> ChainedUploader:
    """S3 first when a bucket is set, ImgBB always behind it."""
    uploaders = []
    if s3_bucket:
        uploaders.append(S3Uploader(s3_bucket, aws_region, client=s3_client))
    uploaders.append(ImgBBUploader(imgbb_api_key))
    return ChainedUploader(uploaders)
