"""Normalized feed item records.

Every provider's payload is mapped onto one of the concrete variants below.
The ``uri`` is the identity key inside the aggregation cache.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from feed_processor.models.enums import ContentType, SourceType, SuppressReason


@dataclass(eq=False)
class FeedItem:
    """Base record shared by all content types.

    Equality is identity: two records with the same URI are still different
    objects, and the cache decides which one survives.
    """

    uri: str
    date: datetime
    source_type: SourceType
    author: str = ""
    avatar_uri: Optional[str] = None
    service_id: Optional[str] = None
    suppress_reason: SuppressReason = SuppressReason.NONE
    content_type: ContentType = field(default=ContentType.IMAGE, init=False)

    @property
    def is_suppressed(self) -> bool:
        return self.suppress_reason is not SuppressReason.NONE

    def text_fields(self) -> Tuple[str, ...]:
        """Textual fields examined by keyword and profanity rules."""
        return (self.author,)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(uri='{self.uri}', source={self.source_type.value}, "
            f"date='{self.date.isoformat()}', suppress={self.suppress_reason.value})>"
        )


@dataclass(eq=False, repr=False)
class ImageFeedItem(FeedItem):
    title: str = ""
    caption: str = ""
    thumbnail_uri: Optional[str] = None
    # (width, height) -> source URL, filled lazily by the display layer
    sizes: Dict[Tuple[int, int], str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.content_type = ContentType.IMAGE

    def text_fields(self) -> Tuple[str, ...]:
        return (self.author, self.title, self.caption)

    @classmethod
    def from_status(cls, status: "StatusFeedItem", thumbnail_uri: str, caption: str) -> "ImageFeedItem":
        """Promote a status post that links to an image."""
        return cls(
            uri=status.uri,
            date=status.date,
            source_type=status.source_type,
            author=status.author,
            avatar_uri=status.avatar_uri,
            service_id=status.service_id,
            suppress_reason=status.suppress_reason,
            caption=caption,
            thumbnail_uri=thumbnail_uri,
        )


@dataclass(eq=False, repr=False)
class StatusFeedItem(FeedItem):
    status: str = ""

    def __post_init__(self) -> None:
        self.content_type = ContentType.STATUS

    def text_fields(self) -> Tuple[str, ...]:
        return (self.author, self.status)


@dataclass(eq=False, repr=False)
class NewsFeedItem(FeedItem):
    title: str = ""
    summary: str = ""
    body: str = ""

    def __post_init__(self) -> None:
        self.content_type = ContentType.NEWS

    def text_fields(self) -> Tuple[str, ...]:
        return (self.author, self.title, self.summary, self.body)
