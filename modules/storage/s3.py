from __future__ import annotations

import io
import logging
import mimetypes
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import boto3
from PIL import Image, UnidentifiedImageError

from services.worker.domain import GenerationRequest
from services.worker.errors import InputBuildError

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "text/plain": "txt",
}


@dataclass
class S3Config:
    endpoint: str
    access_key: str
    secret_key: str
    bucket: str
    region: str | None = None
    prefix: str = "contentforge"


def from_env() -> S3Config:
    endpoint = os.getenv("CF_S3_ENDPOINT")
    access_key = os.getenv("CF_S3_ACCESS_KEY")
    secret_key = os.getenv("CF_S3_SECRET_KEY")
    bucket = os.getenv("CF_S3_BUCKET")
    if not all([endpoint, access_key, secret_key, bucket]):
        raise RuntimeError("Missing S3/MinIO environment variables")
    return S3Config(
        endpoint=str(endpoint),
        access_key=str(access_key),
        secret_key=str(secret_key),
        bucket=str(bucket),
        region=os.getenv("CF_S3_REGION"),
        prefix=os.getenv("CF_S3_PREFIX", "contentforge"),
    )


def client(cfg: S3Config):
    sess = boto3.session.Session()
    return sess.client(
        "s3",
        endpoint_url=cfg.endpoint,
        aws_access_key_id=cfg.access_key,
        aws_secret_access_key=cfg.secret_key,
        region_name=cfg.region,
    )


def upload_bytes(cfg: S3Config, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
    s3 = client(cfg)
    s3.put_object(Bucket=cfg.bucket, Key=key, Body=data, ContentType=content_type)


def download_to(cfg: S3Config, key: str, dest: Path) -> None:
    s3 = client(cfg)
    s3.download_file(cfg.bucket, key, str(dest))


def sniff_extension(data: bytes, content_type: str | None) -> str:
    """File extension for stored output; image bytes are identified by PIL."""
    if content_type in _EXTENSIONS:
        return _EXTENSIONS[content_type]
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").lower()
    except (UnidentifiedImageError, OSError):
        fmt = ""
    if fmt:
        return "jpg" if fmt == "jpeg" else fmt
    guessed = mimetypes.guess_extension(content_type or "")
    return guessed.lstrip(".") if guessed else "bin"


class S3FileStore:
    """File store over a local uploads directory with an S3/MinIO bucket behind it.

    Inputs are read from ``uploads_root`` when present there, otherwise fetched
    from the bucket into a temporary directory. Outputs are always uploaded.
    """

    def __init__(self, cfg: S3Config | None = None, *, uploads_root: str | os.PathLike[str] | None = None) -> None:
        self._cfg = cfg
        self._uploads_root = Path(uploads_root or os.getenv("CF_UPLOADS_ROOT", "uploads"))
        self._scratch: Path | None = None

    @property
    def cfg(self) -> S3Config:
        if self._cfg is None:
            self._cfg = from_env()
        return self._cfg

    def resolve_input(self, ref: str) -> str:
        if not ref:
            raise InputBuildError("no input file was provided")
        direct = Path(ref)
        if direct.is_absolute() and direct.is_file():
            return str(direct)
        local = self._uploads_root / ref.lstrip("/")
        if local.is_file():
            return str(local)
        if self._scratch is None:
            self._scratch = Path(tempfile.mkdtemp(prefix="contentforge-"))
        dest = self._scratch / Path(ref).name
        try:
            download_to(self.cfg, ref.lstrip("/"), dest)
        except Exception as exc:  # noqa: BLE001
            raise InputBuildError(f"input file {ref!r} could not be fetched: {exc}") from exc
        logger.debug("fetched input %s to %s", ref, dest)
        return str(dest)

    def save_output(self, request: GenerationRequest, item_index: int, data: bytes, content_type: str | None) -> str:
        ext = sniff_extension(data, content_type)
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        key = f"{self.cfg.prefix}/{request.customer.id}/requests/{request.id}/{ts}_{item_index}.{ext}"
        ctype = content_type or mimetypes.types_map.get(f".{ext}", "application/octet-stream")
        upload_bytes(self.cfg, key, data, content_type=ctype)
        return key
