"""
roomcast.schemas
~~~~~~~~~~~~~~~~
Pydantic schemas for the REST API and the realtime event protocol.
"""
from roomcast.schemas.api_response import ApiResponse
from roomcast.schemas.events import Acknowledgment, ClientEnvelope, ServerEnvelope
from roomcast.schemas.messages import ChatMessage, DeliveryStatus, FileAttachment

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
