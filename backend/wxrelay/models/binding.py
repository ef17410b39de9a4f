"""
Pydantic model for a WeChat user's runtime binding.
"""

from pydantic import BaseModel


class Binding(BaseModel):
    """
    One row of the wechat_bindings table.

    At most one binding exists per openid; binding again replaces the row.
    """
    model_config = {"from_attributes": True}

    openid: str
    endpoint: str           # runtime webhook URL
    token: str              # bearer token the runtime expects
    created_at: str
