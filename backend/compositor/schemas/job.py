"""Pydantic schemas for job parameters, results and API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class JobParameters(BaseModel):
    """Submission options. camelCase names of the legacy /compose API are accepted too."""

    model_config = ConfigDict(frozen=True)

    primary_asset_ref: Optional[str] = Field(
        default=None, validation_alias=_aliases("primary_asset_ref", "primaryAssetRef", "ugcUrl")
    )
    showcase_asset_ref1: Optional[str] = Field(
        default=None, validation_alias=_aliases("showcase_asset_ref1", "showcaseAssetRef1", "show1Url")
    )
    showcase_asset_ref2: Optional[str] = Field(
        default=None, validation_alias=_aliases("showcase_asset_ref2", "showcaseAssetRef2", "show2Url")
    )
    interval: float = 7.0
    insert_len: float = Field(default=3.0, validation_alias=_aliases("insert_len", "insertLen", "lengthSec"))
    fade_sec: float = Field(default=0.5, validation_alias=_aliases("fade_sec", "fadeSec"))
    width: int = 720
    height: int = 1280
    frame_rate: float = Field(default=30.0, validation_alias=_aliases("frame_rate", "frameRate", "fps"))
    folder: Optional[str] = None
    public_id_prefix: str = Field(default="", validation_alias=_aliases("public_id_prefix", "publicIdPrefix"))
    callback_target: Optional[str] = Field(
        default=None, validation_alias=_aliases("callback_target", "callbackTarget", "callbackUrl")
    )

    def showcase_refs(self) -> list[str]:
        refs = [self.showcase_asset_ref1 or ""]
        if self.showcase_asset_ref2 and self.showcase_asset_ref2.strip():
            refs.append(self.showcase_asset_ref2)
        return refs


class JobResult(BaseModel):
    url: str
    public_id: str
    duration: float
    schedule: list[float]
    elapsed_seconds: float


class JobFailure(BaseModel):
    category: str
    detail: str


class JobCreateResponse(BaseModel):
    job_id: str
    status: str
    status_url: str


class JobEventOut(BaseModel):
    id: int
    job_id: str
    status: str
    message: str
    created_at: datetime


class JobOut(BaseModel):
    id: str
    status: str
    progress: int
    parameters: JobParameters
    result: Optional[JobResult] = None
    failure: Optional[JobFailure] = None
    created_at: datetime
    updated_at: datetime


class CallbackPayload(BaseModel):
    job_id: str
    status: str
    result: Optional[JobResult] = None
    error: Optional[JobFailure] = None
