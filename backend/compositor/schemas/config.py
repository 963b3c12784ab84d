"""Pydantic schemas for persisted app configuration."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RenderConfig(BaseModel):
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    video_codec: str = "libx264"
    preset: str = "veryfast"
    crf: int = 20
    audio_bitrate: str = "128k"
    stderr_tail_chars: int = 4000


class StorageConfig(BaseModel):
    base_url: str = "https://api.cloudinary.com"
    cloud_name: str = ""
    api_key: str = ""
    api_secret: str = ""
    upload_preset: Optional[str] = None
    default_folder: str = "showcase-compositor"
    timeout_s: int = 600


class NotifyConfig(BaseModel):
    timeout_s: float = 10.0


class PipelineConfig(BaseModel):
    download_timeout_s: int = 180
    max_download_mb: int = 500
    max_overlays: int = 500


class AppConfig(BaseModel):
    render: RenderConfig = Field(default_factory=RenderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
