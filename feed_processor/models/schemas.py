"""
Pydantic schemas for provider JSON payloads.

Responses are validated by name before any feed item is built, so a provider
changing its payload shape surfaces as a ParseError instead of a bad record.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from typing_extensions import Annotated

# Providers are inconsistent about sending identifiers as numbers or strings
IdStr = Annotated[str, BeforeValidator(lambda v: str(v))]


class ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Flickr
# ---------------------------------------------------------------------------


class FlickrContent(ProviderModel):
    content: str = Field("", alias="_content")


class FlickrPhoto(ProviderModel):
    id: IdStr
    owner: IdStr
    secret: str
    server: IdStr
    farm: int
    title: str = ""
    ownername: str = ""
    dateupload: int
    iconserver: IdStr = "0"
    iconfarm: int = 0
    pathalias: Optional[str] = None
    description: FlickrContent = Field(default_factory=FlickrContent)


class FlickrPhotoPage(ProviderModel):
    page: int = 1
    pages: int = 1
    photo: List[FlickrPhoto] = Field(default_factory=list)


class FlickrResponse(ProviderModel):
    """Envelope shared by every Flickr REST method."""

    stat: str
    code: Optional[int] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.stat == "ok"


class FlickrPhotosResponse(FlickrResponse):
    photos: Optional[FlickrPhotoPage] = None


class FlickrUser(ProviderModel):
    id: IdStr
    nsid: Optional[IdStr] = None


class FlickrUserResponse(FlickrResponse):
    user: Optional[FlickrUser] = None


class FlickrGroup(ProviderModel):
    nsid: IdStr
    name: str = ""


class FlickrGroupList(ProviderModel):
    group: List[FlickrGroup] = Field(default_factory=list)


class FlickrGroupsResponse(FlickrResponse):
    groups: Optional[FlickrGroupList] = None


class FlickrSize(ProviderModel):
    label: str = ""
    width: int
    height: int
    source: str


class FlickrSizeList(ProviderModel):
    size: List[FlickrSize] = Field(default_factory=list)


class FlickrSizesResponse(FlickrResponse):
    sizes: Optional[FlickrSizeList] = None


# ---------------------------------------------------------------------------
# Twitter streaming
# ---------------------------------------------------------------------------

TWITTER_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


class TwitterUser(ProviderModel):
    id_str: Optional[IdStr] = None
    screen_name: str
    profile_image_url: Optional[str] = None


class TwitterStatus(ProviderModel):
    id_str: IdStr
    text: str
    created_at: datetime
    user: TwitterUser

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, value: Any) -> Any:
        if isinstance(value, str):
            return datetime.strptime(value, TWITTER_DATE_FORMAT)
        return value


# ---------------------------------------------------------------------------
# Facebook
# ---------------------------------------------------------------------------


class FacebookAccessToken(ProviderModel):
    access_token: str
    token_type: Optional[str] = None


class FacebookStreamPost(ProviderModel):
    post_id: IdStr
    actor_id: IdStr
    created_time: int
    message: str = ""
    permalink: str = ""


class FacebookPhoto(ProviderModel):
    pid: IdStr
    owner: IdStr
    created: int
    src_big: str
    link: str
    caption: str = ""


class FacebookAuthor(ProviderModel):
    uid: Optional[IdStr] = None
    page_id: Optional[IdStr] = None
    name: str = ""
    pic_small: Optional[str] = None

    @property
    def author_id(self) -> Optional[str]:
        return self.page_id or self.uid


class FacebookResultSet(ProviderModel):
    name: str
    fql_result_set: List[Dict[str, Any]] = Field(default_factory=list)


class FacebookMultiQueryResponse(ProviderModel):
    """Batched multi-query response; result sets are addressed by query name."""

    data: List[FacebookResultSet] = Field(default_factory=list)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        for result in self.data:
            if result.name == name:
                return result.fql_result_set
        return []

    def posts(self, name: str) -> List[FacebookStreamPost]:
        return [FacebookStreamPost.model_validate(row) for row in self.rows(name)]

    def photos(self, name: str) -> List[FacebookPhoto]:
        return [FacebookPhoto.model_validate(row) for row in self.rows(name)]

    def authors(self, name: str) -> Dict[str, FacebookAuthor]:
        authors = [FacebookAuthor.model_validate(row) for row in self.rows(name)]
        return {a.author_id: a for a in authors if a.author_id}
