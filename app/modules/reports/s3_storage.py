import boto3
from botocore.exceptions import BotoCoreError, ClientError
from app.config import settings
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# WhatsApp fetches documents by link, so uploads are shared through presigned URLs
PRESIGNED_URL_SECONDS = 7 * 24 * 3600


class S3Storage:
    def __init__(self):
        if not self.is_configured():
            raise ValueError("AWS S3 credentials and bucket name must be configured")

        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region
        )
        self.bucket_name = settings.s3_bucket_name

    @staticmethod
    def is_configured() -> bool:
        return all([settings.aws_access_key_id, settings.aws_secret_access_key, settings.s3_bucket_name])

    def upload_pdf(self, content: bytes, key: str) -> str:
        """Upload a generated PDF and return a shareable https URL"""
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType="application/pdf"
            )
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=PRESIGNED_URL_SECONDS,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to upload {key} to S3: {str(e)}")
            raise


def upload_pdf_if_configured(content: bytes, key: str) -> Optional[str]:
    """Best-effort upload; a missing bucket or failed upload yields None"""
    if not S3Storage.is_configured():
        logger.info(f"S3 not configured, skipping upload of {key}")
        return None
    try:
        return S3Storage().upload_pdf(content, key)
    except (BotoCoreError, ClientError, ValueError) as e:
        logger.warning(f"PDF {key} generated but not uploaded: {str(e)}")
        return None
