"""
schemas.py — HTTP Pydantic v2 data contracts.

Defines:
  - InboundMessage   (one chat message delivered by the transport adapter)
  - OutboundReply    (text, or base64 audio plus caption)
  - MessageResponse  (every reply produced for one inbound message, in order)
  - CacheCheckResponse
"""
import base64
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from kasai.conversation.collaborators import AudioReply, ReplyContent


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------

class InboundMessage(BaseModel):
    """
    A message as delivered by the chat transport.

    user_id is the stable external identifier (phone-equivalent).
    display_name is optional, only used to fill an empty user name.
    """
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(
        ...,
        min_length=3,
        max_length=32,
        pattern=r"^[0-9A-Za-z+_.@-]+$",
        description="Stable external user id, e.g. a phone number",
    )
    text: str = Field(..., max_length=4000)
    display_name: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------

class OutboundReply(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["text", "audio"]
    text: Optional[str] = None
    audio_base64: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None

    @classmethod
    def from_content(cls, content: ReplyContent) -> "OutboundReply":
        if isinstance(content, AudioReply):
            return cls(
                kind="audio",
                audio_base64=base64.b64encode(content.audio).decode("ascii"),
                mime_type=content.mime_type,
                caption=content.caption,
            )
        return cls(kind="text", text=content)


class MessageResponse(BaseModel):
    user_id: str
    replies: List[OutboundReply]


class CacheCheckResponse(BaseModel):
    healthy: bool
