"""
WeChat Official Account message model.

Field names follow the XML element names WeChat sends so that a parsed
envelope maps onto the model without a translation table. Only the fields
the bridge reads are modelled; unknown elements are ignored.
"""

from typing import Optional

from pydantic import BaseModel


class WeChatMessage(BaseModel):
    """An inbound message or event pushed by the WeChat server."""
    model_config = {"extra": "ignore"}

    ToUserName: str
    FromUserName: str           # OpenID of the sender
    CreateTime: int = 0
    MsgType: str
    MsgId: Optional[str] = None

    # text
    Content: Optional[str] = None

    # event
    Event: Optional[str] = None
    EventKey: Optional[str] = None

    # image / voice / video
    PicUrl: Optional[str] = None
    MediaId: Optional[str] = None
    Format: Optional[str] = None
    Recognition: Optional[str] = None
    ThumbMediaId: Optional[str] = None

    # location
    Location_X: Optional[float] = None      # latitude
    Location_Y: Optional[float] = None      # longitude
    Scale: Optional[int] = None
    Label: Optional[str] = None

    # link
    Title: Optional[str] = None
    Description: Optional[str] = None
    Url: Optional[str] = None
