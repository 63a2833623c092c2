from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ProviderInfo(BaseModel):
    name: str
    supported_types: List[str]
    enabled: bool


class ProviderConfigIssue(BaseModel):
    provider: str
    reason: str


class ProviderConfigValidationRequest(BaseModel):
    """Provider configuration map keyed by provider name."""

    providers: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class ProviderConfigValidationResponse(BaseModel):
    valid: bool
    errors: List[ProviderConfigIssue] = Field(default_factory=list)
