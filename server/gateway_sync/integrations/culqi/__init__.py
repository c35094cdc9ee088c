from gateway_sync.integrations.culqi.base import (
    ChallengeRequired,
    Created,
    CreateOutcome,
    GatewayResponse,
    KeyScope,
)
from gateway_sync.integrations.culqi.client import CulqiClient

__all__ = [
    "ChallengeRequired",
    "Created",
    "CreateOutcome",
    "CulqiClient",
    "GatewayResponse",
    "KeyScope",
]
