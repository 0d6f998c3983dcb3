"""Request payloads for the developer draft endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from notedraft.publisher.engine import PublishRequest


class NoteDraftRequest(BaseModel):
    """Browser-automation draft request."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: StrictStr = Field(min_length=1)
    body: StrictStr = Field(min_length=1)
    mode: StrictStr
    tags: list[StrictStr] = Field(default_factory=list)
    scheduled_at: StrictStr | None = None
    email: StrictStr | None = None
    password: StrictStr | None = None
    visual_debug: bool = Field(default=False, alias="visualDebug")
    request_id: StrictStr | None = None
    article_id: StrictStr | None = None

    def to_publish_request(self) -> PublishRequest:
        return PublishRequest(
            title=self.title,
            body=self.body,
            mode=self.mode,
            tags=list(self.tags),
            scheduled_at=self.scheduled_at,
            email=self.email,
            password=self.password,
            visual_debug=self.visual_debug,
            request_id=self.request_id,
            article_id=self.article_id,
        )


class ApiDraftRequest(BaseModel):
    """Browserless draft request through the platform API."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: StrictStr = Field(min_length=1)
    body: StrictStr = Field(min_length=1)
    mode: StrictStr
    image_url: StrictStr | None = Field(default=None, alias="imageUrl")
    request_id: StrictStr | None = None
    article_id: StrictStr | None = None

    def to_publish_request(self) -> PublishRequest:
        return PublishRequest(
            title=self.title,
            body=self.body,
            mode=self.mode,
            request_id=self.request_id,
            article_id=self.article_id,
        )


class SettingsUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: StrictStr
    settings: dict[str, Any] = Field(default_factory=dict)
