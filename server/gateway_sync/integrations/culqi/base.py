"""
Culqi Gateway Base Types

Result types shared by the gateway client and the synchronizers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

DEFAULT_BASE_URL = "https://api.culqi.com/v2"
TRACKING_HEADER = "x-culqi-tracking-id"

# Verbs that carry a JSON body.
BODY_METHODS = frozenset({"POST", "PATCH"})


class KeyScope(str, Enum):
    """Which merchant credential authenticates a call."""
    SECRET = "secret"
    PUBLIC = "public"


@dataclass(slots=True)
class GatewayResponse:
    """Successful gateway response."""
    data: Dict[str, Any]
    status: int
    tracking_id: Optional[str] = None


@dataclass(slots=True)
class Created:
    """The gateway created the resource (HTTP 201)."""
    resource: Dict[str, Any]
    tracking_id: Optional[str] = None


@dataclass(slots=True)
class ChallengeRequired:
    """The issuing bank requires 3-D Secure authentication (HTTP 200).

    ``payload`` is the gateway body, ``{user_message, action_code}``, untouched.
    The caller must resubmit with an authentication context.
    """
    payload: Dict[str, Any] = field(default_factory=dict)
    tracking_id: Optional[str] = None


CreateOutcome = Union[Created, ChallengeRequired]
