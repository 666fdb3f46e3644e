"""
MinIO S3-compatible object storage for invoice documents.

Objects live in one bucket keyed ``<owner_id>/<file_name>``. File names are
made unique per owner before upload, and ``put_document`` refuses to
overwrite an existing key so two concurrent ingestions can never clobber
each other's bytes.
"""

import os
from io import BytesIO

from minio import Minio
from minio.error import S3Error

from .errors import StorageError
from .logging_config import get_logger

logger = get_logger(__name__)

# MinIO configuration from environment
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "localhost:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ROOT_USER", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_ROOT_PASSWORD", "minioadmin123")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() == "true"
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "invoices")

_MISSING_CODES = ("NoSuchKey", "NoSuchObject", "ResourceNotFound")

# Lazy-loaded client
_client = None
_bucket_ready = False


def _get_client():
    """Get or create MinIO client (lazy initialization)."""
    global _client
    if _client is None:
        _client = Minio(
            MINIO_ENDPOINT,
            access_key=MINIO_ACCESS_KEY,
            secret_key=MINIO_SECRET_KEY,
            secure=MINIO_SECURE,
        )
    return _client


def _ensure_bucket(client):
    global _bucket_ready
    if _bucket_ready:
        return
    if not client.bucket_exists(MINIO_BUCKET):
        client.make_bucket(MINIO_BUCKET)
        logger.info(f"Created MinIO bucket: {MINIO_BUCKET}")
    _bucket_ready = True


def object_key(owner_id: str, file_name: str) -> str:
    """Storage path for an owner's document."""
    safe_name = file_name.replace("/", "_").replace("\\", "_")
    return f"{owner_id}/{safe_name}"


def document_exists(storage_path: str) -> bool:
    client = _get_client()
    try:
        client.stat_object(MINIO_BUCKET, storage_path)
        return True
    except S3Error as e:
        if e.code in _MISSING_CODES:
            return False
        raise StorageError(f"Failed to stat {storage_path}: {e.code}") from e


def put_document(
    owner_id: str,
    file_name: str,
    data: bytes,
    content_type: str = "application/pdf",
) -> str | None:
    """
    Upload a document without overwriting.

    Args:
        owner_id: Owner of the document
        file_name: De-duplicated file name
        data: Raw bytes
        content_type: MIME type stored with the object

    Returns:
        Storage path, or None if the key is already taken.

    Raises:
        StorageError: If the upload fails
    """
    client = _get_client()
    storage_path = object_key(owner_id, file_name)

    try:
        _ensure_bucket(client)
        if document_exists(storage_path):
            return None

        client.put_object(
            bucket_name=MINIO_BUCKET,
            object_name=storage_path,
            data=BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
    except S3Error as e:
        raise StorageError(f"Failed to upload {storage_path}: {e.code}") from e

    logger.debug(
        f"Stored document {storage_path} ({len(data)} bytes)",
        extra={"owner_id": owner_id},
    )
    return storage_path


def get_document(storage_path: str) -> bytes:
    """Download a document's bytes."""
    client = _get_client()
    response = None
    try:
        response = client.get_object(MINIO_BUCKET, storage_path)
        return response.read()
    except S3Error as e:
        raise StorageError(f"Failed to read {storage_path}: {e.code}") from e
    finally:
        if response is not None:
            response.close()
            response.release_conn()


def delete_document(storage_path: str) -> None:
    client = _get_client()
    try:
        client.remove_object(MINIO_BUCKET, storage_path)
    except S3Error as e:
        raise StorageError(f"Failed to delete {storage_path}: {e.code}") from e
