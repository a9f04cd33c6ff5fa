"""Pydantic models for the Jellyfin webhook plugin payload.

The plugin's JSON keys are PascalCase template variables; they are mapped to
snake_case attributes via aliases. Unknown keys are kept (``extra="allow"``)
so custom templates do not fail validation.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JellyfinPayload(BaseModel):
    """Body of a Jellyfin webhook notification."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    notification_type: Optional[str] = Field(None, alias="NotificationType")
    notification_username: Optional[str] = Field(None, alias="NotificationUsername")
    user_id: Optional[str] = Field(None, alias="UserId")
    server_url: Optional[str] = Field(None, alias="ServerUrl")

    item_type: Optional[str] = Field(None, alias="ItemType")
    item_id: Optional[str] = Field(None, alias="ItemId")
    name: Optional[str] = Field(None, alias="Name")

    series_id: Optional[str] = Field(None, alias="SeriesId")
    series_name: Optional[str] = Field(None, alias="SeriesName")
    season_number: int = Field(1, alias="SeasonNumber")
    episode_number: Optional[int] = Field(None, alias="EpisodeNumber")

    # PlaybackStop
    played_to_completion: Optional[bool] = Field(None, alias="PlayedToCompletion")

    # UserDataSaved
    save_reason: Optional[str] = Field(None, alias="SaveReason")
    played: Optional[bool] = Field(None, alias="Played")

    @field_validator("season_number", mode="before")
    @classmethod
    def _default_season(cls, v):
        # Templates render a missing season as null
        return 1 if v is None else v
