"""
S3-compatible storage uploader for backup archives

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tqdm import tqdm

from .base import DestinationCredential
from .crypto import CredentialCipher
from .errors import UploadFailed

DEFAULT_NAMESPACE = "github-backups"
PRESIGNED_URL_EXPIRY = 3600

ClientFactory = Callable[[DestinationCredential, str, str], Any]


def path_safe_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with milliseconds, ':' and '.' replaced by '-'"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    iso = now.strftime("%Y-%m-%dT%H:%M:%S") + f".{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def compute_key(
    archive_name: str,
    user_id: str,
    prefix: Optional[str] = None,
    namespace: str = DEFAULT_NAMESPACE,
    now: Optional[datetime] = None,
) -> str:
    """
    Object key for an archive.

    With a destination prefix (grouped runs) the archive lands directly
    under it; otherwise under {namespace}/{user_id}/{timestamp}/.
    """
    if prefix:
        return f"{prefix.rstrip('/')}/{archive_name}"
    return f"{namespace}/{user_id}/{path_safe_timestamp(now)}/{archive_name}"


def create_s3_client(
    destination: DestinationCredential, access_key_id: str, secret_access_key: str
):
    config = Config(s3={"addressing_style": "path"}) if destination.force_path_style else None
    session = boto3.Session(
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name=destination.region,
    )
    return session.client("s3", endpoint_url=destination.endpoint or None, config=config)


class S3Uploader:
    def __init__(
        self,
        cipher: CredentialCipher,
        namespace: str = DEFAULT_NAMESPACE,
        client_factory: Optional[ClientFactory] = None,
        show_progress: bool = True,
    ):
        self.cipher = cipher
        self.namespace = namespace
        self.client_factory = client_factory or create_s3_client
        self.show_progress = show_progress
        self.logger = logging.getLogger(self.__class__.__name__)

    def _client_for(self, destination: DestinationCredential):
        # Decrypted keys live only for the duration of client construction
        access_key_id, secret_access_key = self.cipher.decrypt_credentials(destination)
        return self.client_factory(destination, access_key_id, secret_access_key)

    def upload(
        self,
        archive_path: Path,
        destinations: List[DestinationCredential],
        user_id: str,
        prefix: Optional[str] = None,
    ) -> str:
        """
        Upload an archive to every destination, one after another.

        A failure on one destination stops the remaining ones; destinations
        already written are left in place.

        Args:
            archive_path: Archive to upload
            destinations: Ordered destination list
            user_id: Owner of the backup, used in the key and object metadata
            prefix: Explicit destination path prefix

        Returns:
            The object key used on every destination

        Raises:
            UploadFailed: Naming the first destination that failed
        """
        archive_path = Path(archive_path)
        s3_key = compute_key(archive_path.name, user_id, prefix, self.namespace)
        file_size = os.path.getsize(archive_path)

        for destination in destinations:
            self.logger.info(
                f"[UPLOAD] Uploading {archive_path.name} to {destination.name} "
                f"({file_size / 1024 / 1024:.2f} MB)..."
            )
            try:
                client = self._client_for(destination)
                with tqdm(
                    total=file_size,
                    unit="B",
                    unit_scale=True,
                    desc=destination.name,
                    disable=not self.show_progress,
                ) as pbar:

                    def upload_callback(bytes_transferred):
                        pbar.update(bytes_transferred)

                    client.upload_file(
                        str(archive_path),
                        destination.bucket,
                        s3_key,
                        Callback=upload_callback,
                        ExtraArgs={
                            "ContentType": "application/x-xz",
                            "Metadata": {
                                "user-id": str(user_id),
                                "backup-date": datetime.now(timezone.utc).isoformat(),
                                "backup-type": "github-full",
                            },
                        },
                    )
            except (ClientError, BotoCoreError, Boto3Error, OSError, ValueError) as e:
                self.logger.error(
                    f"[ERROR] Failed to upload to S3 config {destination.name}: {e}"
                )
                raise UploadFailed(destination.name, str(e)) from e

            self.logger.info(
                f"[UPLOAD] Successfully uploaded to s3://{destination.bucket}/{s3_key} ({destination.name})"
            )

        return s3_key

    def list_backups(
        self,
        destination: DestinationCredential,
        prefix: str = "",
        delimiter: str = "/",
        max_keys: int = 1000,
        continuation_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Browse one level of a destination below prefix"""
        client = self._client_for(destination)
        params = {
            "Bucket": destination.bucket,
            "Prefix": prefix,
            "Delimiter": delimiter,
            "MaxKeys": max_keys,
        }
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        data = client.list_objects_v2(**params)

        folders = [
            {
                "type": "folder",
                "name": common["Prefix"][len(prefix):].rstrip(delimiter),
                "path": common["Prefix"],
                "size": None,
                "last_modified": None,
            }
            for common in data.get("CommonPrefixes", [])
        ]
        files = [
            {
                "type": "file",
                "name": obj["Key"][len(prefix):],
                "path": obj["Key"],
                "size": obj["Size"],
                "last_modified": obj["LastModified"].isoformat()
                if obj.get("LastModified")
                else None,
            }
            for obj in data.get("Contents", [])
            if obj["Key"] != prefix
        ]

        return {
            "current_path": prefix,
            "items": folders + files,
            "has_more": bool(data.get("IsTruncated", False)),
            "next_token": data.get("NextContinuationToken"),
        }

    def presigned_download_url(
        self,
        destination: DestinationCredential,
        key: str,
        expires_in: int = PRESIGNED_URL_EXPIRY,
    ) -> Dict[str, Any]:
        """
        Presigned GET URL for a stored archive.

        Raises:
            FileNotFoundError: If the object does not exist
        """
        client = self._client_for(destination)
        try:
            client.head_object(Bucket=destination.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if code in ("404", "NoSuchKey", "NotFound") or status == 404:
                raise FileNotFoundError(f"File not found: {key}") from e
            raise

        file_name = key.rsplit("/", 1)[-1]
        url = client.generate_presigned_url(
            "get_object",
            Params={
                "Bucket": destination.bucket,
                "Key": key,
                "ResponseContentDisposition": f'attachment; filename="{file_name}"',
            },
            ExpiresIn=expires_in,
        )
        return {"download_url": url, "file_name": file_name, "expires_in": expires_in}

    def test_connection(self, destination: DestinationCredential) -> bool:
        """Test S3 connectivity and permissions"""
        try:
            client = self._client_for(destination)
            client.list_objects_v2(Bucket=destination.bucket, MaxKeys=1)

            test_key = f"{self.namespace}/health_check_test.txt"
            test_content = f"Health check test - {datetime.now(timezone.utc).isoformat()}"
            client.put_object(
                Bucket=destination.bucket,
                Key=test_key,
                Body=test_content.encode("utf-8"),
                Metadata={"test": "health_check"},
            )
            client.delete_object(Bucket=destination.bucket, Key=test_key)
            return True

        except Exception as e:
            self.logger.error(f"S3 connection test failed for {destination.name}: {e}")
            return False
