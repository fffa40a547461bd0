from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes with camelCase keys, accepts snake_case names in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgramView(CamelModel):
    """Program as returned by current/upcoming queries"""
    title: str
    description: str = ""
    category: str = ""
    start: str = Field(..., description="Start time as HH:MM in the display offset")
    stop: str = Field(..., description="Stop time as HH:MM in the display offset")
    channel_name: str | None = None
    channel_icon: str | None = None


class StatusResponse(CamelModel):
    """Diagnostic snapshot of the EPG manager"""
    is_updating: bool
    last_update: str = Field(..., description="HH:MM of the last update attempt, or 'never'")
    channels_count: int
    icons_count: int
    programs_count: int
    timezone: str


class PlaylistChannel(BaseModel):
    """Channel descriptor coming from an external playlist"""
    model_config = ConfigDict(extra="allow")

    tvg_id: str | None = Field(None, description="EPG identifier declared by the playlist entry")
    name: str | None = None


class SourceRequest(BaseModel):
    source: str | list[str] = Field(..., description="EPG URL, comma-separated URLs, or a list of URLs")


class MissingChannelsRequest(BaseModel):
    channels: list[PlaylistChannel]


class MissingChannelsResponse(BaseModel):
    count: int
    channels: list[PlaylistChannel]


class IconResponse(BaseModel):
    channel_id: str
    icon: str | None


class UpdateResponse(BaseModel):
    status: str = Field(..., description="'completed' or 'skipped'")
    message: str
