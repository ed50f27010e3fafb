"""Pydantic response schemas."""
from pydantic import BaseModel, ConfigDict


def _config_forbid(**kwargs):
    return ConfigDict(extra="forbid", **kwargs)


class DownloadLinkResponse(BaseModel):
    model_config = _config_forbid()
    url: str
