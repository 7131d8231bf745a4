"""
app.schemas
~~~~~~~~~~~
Pydantic schemas for the chat event protocol and the HTTP reporter.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.chat_events import (
    ChatMessage,
    Identity,
    OutboundEvent,
    RoomInfoData,
    StatsData,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
