import re

from gateway_sync.core.errors import ErrorKind, GatewayError, SyncError
from gateway_sync.core.logging import get_logger
from gateway_sync.integrations.culqi import CulqiClient
from gateway_sync.schemas.token import TokenValidation

logger = get_logger(__name__)

TOKEN_ID_PATTERN = re.compile(r"^tkn_(test|live)_[a-zA-Z0-9]{16}$")


def is_valid_token_format(token_id: str) -> bool:
    return bool(TOKEN_ID_PATTERN.match(token_id or ""))


class TokenValidator:
    """Checks a single-use card token before it is attached to a card or charge.

    An unknown or consumed token is reported through ``is_valid=False``;
    only a malformed id or an unrelated gateway failure raises.
    """

    def __init__(self, client: CulqiClient):
        self.client = client

    async def validate(self, token_id: str) -> TokenValidation:
        if not is_valid_token_format(token_id):
            raise SyncError(ErrorKind.INVALID_REQUEST, "Invalid token format", details={"token_id": token_id})

        try:
            response = await self.client.request(f"/tokens/{token_id}")
        except GatewayError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                logger.info("token.not_found", token_id=token_id, tracking_id=exc.tracking_id)
                return TokenValidation(is_valid=False, error="Token not found", tracking_id=exc.tracking_id)
            raise

        token = response.data
        if not token.get("active"):
            logger.warning("token.inactive", token_id=token_id)
            return TokenValidation(
                is_valid=False,
                error="Token inactive or already used",
                tracking_id=response.tracking_id,
            )

        logger.info(
            "token.valid",
            token_id=token_id,
            card_brand=(token.get("iin") or {}).get("card_brand"),
            last_four=token.get("last_four"),
        )
        return TokenValidation(is_valid=True, token=token, tracking_id=response.tracking_id)
