"""Object storage uploads for generated media."""

from typing import Any

from board_engine.core.logging import get_logger

logger = get_logger(__name__)


def upload_public_bytes(supabase: Any, bucket: str, key: str, data: bytes, content_type: str) -> str:
    """
    Upload bytes to a storage bucket and return the public URL.

    Args:
        supabase: Supabase client
        bucket: Bucket name
        key: Object path inside the bucket
        data: File bytes
        content_type: MIME type

    Returns:
        Public URL of the object

    Raises:
        RuntimeError: If no public URL is available after upload
        Exception: Storage errors propagate (e.g. bucket not found)
    """
    store = supabase.storage.from_(bucket)
    store.upload(key, data, {"content-type": content_type, "upsert": "false"})
    url = (store.get_public_url(key) or "").strip().rstrip("?")
    if not url:
        raise RuntimeError("Failed to get public url")
    logger.info(f"Uploaded {len(data)} bytes to {bucket}/{key}")
    return url
