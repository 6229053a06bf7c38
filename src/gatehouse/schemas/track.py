"""Visitor tracking schema."""

from pydantic import BaseModel, ConfigDict, Field


class TrackRequest(BaseModel):
    """Page view reported by the public site."""

    user_agent: str | None = Field(None, alias="userAgent", max_length=1000)
    page_viewed: str | None = Field(None, alias="pageViewed", max_length=500)
    reel_id: str | None = Field(None, alias="reelId", max_length=200)

    model_config = ConfigDict(populate_by_name=True)
