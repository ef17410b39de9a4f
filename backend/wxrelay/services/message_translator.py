"""
Message translation between WeChat XML envelopes and runtime tasks.

Inbound:  raw XML  -> WeChatMessage -> task text
Outbound: (to, from, content) -> passive-reply XML

WeChat envelopes are flat: <xml><Tag>value</Tag>...</xml>. Values may be
wrapped in CDATA; ElementTree unwraps them transparently.
"""

import time
from xml.etree import ElementTree as ET

from pydantic import ValidationError

from wxrelay.models.wechat import WeChatMessage

# Payloads larger than this are not WeChat messages
XML_MAX_PAYLOAD_BYTES = 64 * 1024

VOICE_UNRECOGNIZED = "[语音消息，无法识别]"


class MessageParseError(ValueError):
    """Raised when the request body is not a usable WeChat XML envelope."""


def parse_wechat_xml(raw: bytes | str) -> WeChatMessage:
    """
    Parse a WeChat XML body into a WeChatMessage.

    Raises:
        MessageParseError: on oversize input, malformed XML, or missing
            required elements (ToUserName, FromUserName, MsgType).
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    if not raw.strip():
        raise MessageParseError("Empty body")
    if len(raw) > XML_MAX_PAYLOAD_BYTES:
        raise MessageParseError(f"Payload size {len(raw)} exceeds limit {XML_MAX_PAYLOAD_BYTES}")

    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise MessageParseError(f"XML parse error: {e}") from e

    fields = {child.tag: (child.text or "").strip() for child in root}
    # Empty elements carry no information; let model defaults apply
    fields = {tag: value for tag, value in fields.items() if value != ""}

    try:
        return WeChatMessage(**fields)
    except ValidationError as e:
        raise MessageParseError(f"Invalid WeChat message: {e}") from e


def message_to_task(message: WeChatMessage) -> str:
    """
    Derive the runtime task text for any message kind.

    Never raises and never returns an empty string: unknown kinds become a
    generic placeholder.
    """
    msg_type = message.MsgType

    if msg_type == "text" and message.Content:
        return message.Content
    if msg_type == "voice":
        return message.Recognition or VOICE_UNRECOGNIZED
    if msg_type == "image":
        return f"[图片消息] {message.PicUrl or ''}".rstrip()
    if msg_type == "location":
        return (
            f"[位置消息] 经度: {message.Location_Y}, "
            f"纬度: {message.Location_X}, {message.Label or ''}"
        ).rstrip(", ")
    if msg_type == "link":
        return f"[链接消息] {message.Title or ''}\n{message.Description or ''}\n{message.Url or ''}"

    return f"[{msg_type or 'unknown'}消息]"


def _cdata(value: str) -> str:
    # "]]>" cannot appear inside a CDATA section; split it across two sections
    return "<![CDATA[" + value.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def build_text_reply(to_user: str, from_user: str, content: str) -> str:
    """Build a passive text reply envelope, stamped with the current time."""
    return (
        "<xml>"
        f"<ToUserName>{_cdata(to_user)}</ToUserName>"
        f"<FromUserName>{_cdata(from_user)}</FromUserName>"
        f"<CreateTime>{int(time.time())}</CreateTime>"
        "<MsgType><![CDATA[text]]></MsgType>"
        f"<Content>{_cdata(content)}</Content>"
        "</xml>"
    )
