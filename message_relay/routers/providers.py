from typing import List

from fastapi import APIRouter, Depends

from message_relay.dependencies import get_message_service
from message_relay.models.api.providers import (
    ProviderConfigIssue,
    ProviderConfigValidationRequest,
    ProviderConfigValidationResponse,
    ProviderInfo,
)
from message_relay.services.message_service import MessageService

router = APIRouter()


@router.get("", response_model=List[ProviderInfo])
async def list_providers(
    service: MessageService = Depends(get_message_service),
) -> List[ProviderInfo]:
    return service.list_providers()


@router.post("/validate", response_model=ProviderConfigValidationResponse)
async def validate_provider_configs(
    request: ProviderConfigValidationRequest,
    service: MessageService = Depends(get_message_service),
) -> ProviderConfigValidationResponse:
    """Validate a provider configuration map, or the active one when empty."""
    issues = service.validate_provider_configs(request.providers or None)
    return ProviderConfigValidationResponse(
        valid=not issues,
        errors=[ProviderConfigIssue(**issue) for issue in issues],
    )
