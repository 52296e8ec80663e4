import time
from datetime import datetime, timedelta
from typing import Dict, Any
from uuid import UUID

import boto3
from botocore.config import Config

from rewind.config import settings


class S3Client:
    """S3-compatible client for recording uploads"""
    
    def __init__(self):
        self.bucket = settings.audio_bucket
        self.region = settings.aws_region
        
        options = {
            "region_name": self.region,
            "config": Config(signature_version='s3v4'),
        }
        if settings.s3_endpoint_url:
            options["endpoint_url"] = settings.s3_endpoint_url
        
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            self.client = boto3.client(
                's3',
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                **options
            )
        else:
            # Use IAM role
            self.client = boto3.client('s3', **options)
    
    def get_recording_key(self, user_id: UUID, user_question_id: UUID) -> str:
        """Object key for the next recording of a user question"""
        millis = int(time.time() * 1000)
        return f"recordings/{user_id}/{user_question_id}/v{millis}.webm"
    
    def generate_recording_upload(
        self,
        user_id: UUID,
        user_question_id: UUID,
        content_type: str = "audio/webm",
        expires_in: int = None,
    ) -> Dict[str, Any]:
        """
        Generate presigned PUT URL for a recording upload.
        
        Returns:
            {upload_url, audio_path, expires_at}
        """
        expires_in = expires_in or settings.upload_url_expiry_seconds
        now = datetime.utcnow()
        key = self.get_recording_key(user_id, user_question_id)
        
        url = self.client.generate_presigned_url(
            'put_object',
            Params={
                'Bucket': self.bucket,
                'Key': key,
                'ContentType': content_type,
            },
            ExpiresIn=expires_in
        )
        
        return {
            "upload_url": url,
            "audio_path": key,
            "expires_at": now + timedelta(seconds=expires_in),
        }


# Global instance
s3_client = S3Client()
