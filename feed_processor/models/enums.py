"""Classification enums shared by feed items, sources and the retrieval API."""

from enum import Enum, IntFlag
from typing import List


class ContentType(IntFlag):
    """Independent content flags; masks combine them with ``|``."""

    IMAGE = 1
    STATUS = 2
    NEWS = 4

    @classmethod
    def all(cls) -> "ContentType":
        return cls.IMAGE | cls.STATUS | cls.NEWS

    @classmethod
    def singletons(cls) -> List["ContentType"]:
        """Single-flag members in declaration order."""
        return [cls.IMAGE, cls.STATUS, cls.NEWS]

    def constituents(self) -> List["ContentType"]:
        """The singleton types contained in this mask."""
        return [t for t in ContentType.singletons() if t & self]


class SourceType(str, Enum):
    """Provider a feed source or feed item belongs to."""

    FLICKR = "flickr"
    TWITTER = "twitter"
    NEWS = "news"
    FACEBOOK = "facebook"


class SuppressReason(str, Enum):
    """Why an item is withheld from retrieval."""

    NONE = "none"
    AUTHOR = "author"
    URI = "uri"
    KEYWORD = "keyword"
    PROFANITY = "profanity"


class RetrievalOrder(str, Enum):
    """Ordering of the per-content-type retrieval views."""

    CHRONOLOGICAL = "chronological"
    RANDOM = "random"
