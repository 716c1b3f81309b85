"""Reading bookmark model."""

from datetime import datetime

from pydantic import BaseModel, Field


class ReadingBookmark(BaseModel):
    """Where the reader left off in a generated book."""

    book_id: str
    module_index: int = 0
    scroll_position: float = 0.0
    last_read_at: datetime = Field(default_factory=datetime.now)
    percent_complete: int = 0  # 0-100


class BookmarkStats(BaseModel):
    has_bookmark: bool = False
    percent_complete: int = 0
    last_read_at: datetime | None = None
    days_ago: int = 0
