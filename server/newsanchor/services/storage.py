from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any, Optional

from supabase import Client, create_client

from newsanchor.config import settings
from newsanchor.services.errors import ConfigurationError, UploadError
from newsanchor.services.models import GenerationResult


logger = logging.getLogger(__name__)


def build_supabase_client() -> Client:
    """Create a Supabase client from settings, failing fast on missing credentials."""
    url = (settings.supabase_url or "").strip()
    key = (settings.supabase_service_role_key or "").strip()
    if not url or not key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
    return create_client(url, key)


class MediaUploader:
    """Pushes local media into a public Supabase Storage bucket.

    Job APIs take URLs, not bytes, so every input they need is uploaded first.
    Each call writes a new object; repeated uploads of one file yield distinct URLs.
    No retries happen here.
    """

    def __init__(
        self,
        *,
        client: Optional[Any] = None,
        bucket: Optional[str] = None,
        folder: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._client = client if client is not None else build_supabase_client()
        self._bucket = bucket or settings.supabase_storage_bucket
        self._folder = (folder if folder is not None else settings.supabase_storage_folder).strip("/")
        self._timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.provider_request_timeout_seconds
        )

    def _object_key(self, local_path: Path) -> str:
        return f"{self._folder}/{local_path.name}" if self._folder else local_path.name

    async def upload(self, local_path: Path) -> str:
        local_path = Path(local_path)
        if not local_path.is_file():
            raise UploadError(f"File to upload does not exist: {local_path}")
        key = self._object_key(local_path)
        content_type = mimetypes.guess_type(local_path.name)[0] or "application/octet-stream"

        def _upload() -> str:
            bucket = self._client.storage.from_(self._bucket)
            bucket.upload(
                path=key,
                file=local_path.read_bytes(),
                file_options={"content-type": content_type, "upsert": "true"},
            )
            return bucket.get_public_url(key)

        try:
            public_url = await asyncio.wait_for(asyncio.to_thread(_upload), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise UploadError(f"Upload of {local_path.name} timed out") from exc
        except Exception as exc:
            raise UploadError(f"Upload of {local_path.name} failed: {exc}") from exc

        public_url = str(public_url or "").strip().rstrip("?")
        if not public_url.startswith(("http://", "https://")):
            raise UploadError(f"Storage returned no public URL for {local_path.name}")
        logger.info("Uploaded %s -> %s", local_path.name, public_url)
        return public_url


class ResultRecorder:
    """Records successful runs in the results table.

    Recording is best-effort: a failure is logged and ``None`` returned, since the
    video already exists and the user should still receive it.
    """

    def __init__(self, *, client: Optional[Any] = None, table: Optional[str] = None) -> None:
        self._client = client if client is not None else build_supabase_client()
        self._table = table or settings.supabase_results_table

    async def record(
        self,
        result: GenerationResult,
        *,
        input_reference: Optional[str],
        input_type: str = "url",
    ) -> Optional[str]:
        payload = {
            "video_url": result.video_url,
            "used_fallback": result.used_fallback,
            "input_type": input_type,
            "input_content": input_reference,
        }

        def _insert() -> list[dict]:
            response = self._client.table(self._table).insert(payload).execute()
            data = getattr(response, "data", None)
            return data if isinstance(data, list) else []

        try:
            rows = await asyncio.to_thread(_insert)
        except Exception as exc:
            logger.warning("Could not record video result %s: %s", result.video_url, exc)
            return None
        for row in rows:
            if isinstance(row, dict) and row.get("id") is not None:
                return str(row["id"])
        return None
