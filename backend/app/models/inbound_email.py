"""
Provider-agnostic inbound message model.

This is what the router works with once provider-specific field names
(Postmark's PascalCase, Resend's snake_case, the mail worker's native shape)
have been mapped by the adapter layer.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class InboundMessage(BaseModel):
    """Normalized inbound message, provider-agnostic."""

    sender: str
    recipient: str
    subject: str = ""
    content: str = ""
    timestamp: Optional[datetime] = None   # origination; None means "now"
