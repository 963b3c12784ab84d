"""HTTP client for the Cloudinary-compatible asset store."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Optional

import httpx

from compositor.core.errors import PublishFailedError
from compositor.schemas.config import StorageConfig


@dataclass
class PublishResult:
    url: str
    public_id: str


def dated_folder(folder: str, today: Optional[date] = None) -> str:
    day = (today or date.today()).isoformat()
    base = folder.strip().strip("/")
    return f"{base}/{day}" if base else day


def sign_params(params: dict[str, Any], api_secret: str) -> str:
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def _error_message(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text[:500]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return resp.text[:500]


class AssetPublisher:
    def __init__(self, cfg: StorageConfig, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.cfg = cfg
        self._transport = transport

    def _upload_params(self, folder: str, public_id: str) -> dict[str, Any]:
        params: dict[str, Any] = {
            "folder": folder,
            "public_id": public_id,
            "overwrite": "true",
        }
        if self.cfg.api_key and self.cfg.api_secret:
            params["timestamp"] = str(int(time.time()))
            params["signature"] = sign_params(params, self.cfg.api_secret)
            params["api_key"] = self.cfg.api_key
        elif self.cfg.upload_preset:
            params["upload_preset"] = self.cfg.upload_preset
        else:
            raise PublishFailedError("Asset store api_key/api_secret or upload_preset is required")
        return params

    def publish(self, artifact: Path, folder: str, public_id: str) -> PublishResult:
        if not self.cfg.cloud_name:
            raise PublishFailedError("Asset store cloud_name is required")

        params = self._upload_params(dated_folder(folder), public_id)
        url = f"{self.cfg.base_url.rstrip('/')}/v1_1/{self.cfg.cloud_name}/video/upload"

        try:
            with httpx.Client(timeout=self.cfg.timeout_s, transport=self._transport) as client:
                with artifact.open("rb") as fh:
                    resp = client.post(url, data=params, files={"file": (artifact.name, fh, "video/mp4")})
        except httpx.HTTPError as exc:
            raise PublishFailedError(f"Upload failed: {exc}") from exc

        if resp.status_code >= 400:
            raise PublishFailedError(f"Upload failed: {resp.status_code} {_error_message(resp)}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise PublishFailedError(f"Upload returned non-JSON response: {resp.text[:200]}") from exc

        secure_url = payload.get("secure_url") or payload.get("url")
        if not isinstance(secure_url, str) or not secure_url:
            raise PublishFailedError("Upload response missing URL")
        return PublishResult(url=secure_url, public_id=str(payload.get("public_id") or public_id))
