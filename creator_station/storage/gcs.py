from __future__ import annotations

import base64
import json
from functools import lru_cache
from datetime import timedelta
from typing import Optional

from typing import Any, cast
from google.cloud import storage  # type: ignore
from google.oauth2 import service_account  # type: ignore

from creator_station.config.settings import Settings, get_settings


@lru_cache(maxsize=4)
def _client(settings: Settings) -> storage.Client:
    """Create a Storage client.

    Prefers explicit credentials from `GCP_SA_KEY_B64` when provided,
    otherwise falls back to Application Default Credentials.
    """
    if settings.gcp_sa_key_b64:
        try:
            raw = base64.b64decode(settings.gcp_sa_key_b64)
            info = cast(dict[str, Any], json.loads(raw.decode("utf-8")))
            creds = service_account.Credentials.from_service_account_info(info)
            project = cast(str | None, settings.gcp_project or info.get("project_id"))
            return storage.Client(project=project, credentials=creds)
        except (ValueError, KeyError) as e:
            raise RuntimeError("Failed to load GCP service account from GCP_SA_KEY_B64") from e
    # Fallback: ADC (e.g., on Cloud Run or when GOOGLE_APPLICATION_CREDENTIALS is set)
    return storage.Client(project=settings.gcp_project)


def _bucket(bucket_name: Optional[str], settings: Settings) -> storage.Bucket:
    if not bucket_name:
        raise RuntimeError("GCS bucket is required. Set RENDER_ARCHIVE_BUCKET or pass bucket_name explicitly.")
    return _client(settings).bucket(bucket_name)


def upload_file(
    path: str,
    local_file: str,
    content_type: Optional[str] = None,
    bucket_name: Optional[str] = None,
    settings: Settings | None = None,
) -> str:
    s = settings or get_settings()
    b = _bucket(bucket_name or s.archive_bucket, s)
    blob = b.blob(path)
    blob.upload_from_filename(local_file, content_type=content_type)
    return f"gs://{b.name}/{path}"


def signed_url(
    path: str,
    expire_seconds: Optional[int] = None,
    bucket_name: Optional[str] = None,
    settings: Settings | None = None,
) -> str:
    s = settings or get_settings()
    expires = expire_seconds if expire_seconds is not None else s.signed_url_expire_seconds
    b = _bucket(bucket_name or s.archive_bucket, s)
    blob = b.blob(path)
    url = blob.generate_signed_url(
        version="v4",
        expiration=timedelta(seconds=expires),
        method="GET",
    )
    return url
