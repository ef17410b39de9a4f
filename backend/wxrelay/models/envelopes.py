"""
Pydantic models exchanged with the runtime.

Models:
  TaskMetadata / TaskEnvelope  : body POSTed by the bridge to a runtime webhook
  ResultMetadata / CallbackPayload: body the runtime POSTs back to /callback/{openid}
  StreamChunkPayload           : body for /callback/{openid}/stream
"""

from typing import Optional

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Bridge -> runtime
# ---------------------------------------------------------------------------

class TaskMetadata(BaseModel):
    """Passthrough fields describing the WeChat message behind a task."""
    model_config = {"extra": "allow"}

    openid: Optional[str] = None
    msg_type: Optional[str] = None
    msg_id: Optional[str] = None
    timestamp: Optional[int] = None


class TaskEnvelope(BaseModel):
    """One unit of work for the runtime."""

    task: str
    callback_url: str
    metadata: TaskMetadata = TaskMetadata()


# ---------------------------------------------------------------------------
# Runtime -> bridge
# ---------------------------------------------------------------------------

class ResultMetadata(BaseModel):
    model_config = {"extra": "allow"}

    thinking_time_ms: Optional[float] = None
    chunks: Optional[int] = None
    model: Optional[str] = None


class CallbackPayload(BaseModel):
    """Outcome of a task, reported by the runtime."""

    success: bool
    result: Optional[str] = None
    error: Optional[str] = None
    metadata: Optional[ResultMetadata] = None


class StreamChunkPayload(BaseModel):
    """A single streamed piece of a result; only the final one is delivered."""

    chunk: str = ""
    done: bool = False
    chunk_index: Optional[int] = None
