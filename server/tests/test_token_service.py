import pytest

from gateway_sync.core.errors import ErrorKind, GatewayError, SyncError
from gateway_sync.services.token_service import TokenValidator, is_valid_token_format

from conftest import ok

VALID_TOKEN = "tkn_test_abcdef1234567890"


class TestTokenFormat:
    @pytest.mark.parametrize(
        "token_id, expected",
        [
            (VALID_TOKEN, True),
            ("tkn_live_ABCDEF1234567890", True),
            ("tkn_test_short", False),
            ("tkn_prod_abcdef1234567890", False),
            ("crd_test_abcdef1234567890", False),
            ("", False),
        ],
    )
    def test_is_valid_token_format(self, token_id, expected):
        assert is_valid_token_format(token_id) is expected


class TestTokenValidator:
    @pytest.mark.asyncio
    async def test_malformed_token_raises_without_gateway_call(self, gateway):
        validator = TokenValidator(gateway)

        with pytest.raises(SyncError) as exc_info:
            await validator.validate("not-a-token")

        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert exc_info.value.message == "Invalid token format"
        gateway.request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_active_token_is_valid(self, gateway):
        token = {"id": VALID_TOKEN, "active": True, "last_four": "1111", "iin": {"card_brand": "Visa"}}
        gateway.request.return_value = ok(token, tracking_id="trk_token")

        result = await TokenValidator(gateway).validate(VALID_TOKEN)

        assert result.is_valid is True
        assert result.token == token
        assert result.tracking_id == "trk_token"
        gateway.request.assert_awaited_once_with(f"/tokens/{VALID_TOKEN}")

    @pytest.mark.asyncio
    async def test_inactive_token_is_reported_not_raised(self, gateway):
        gateway.request.return_value = ok({"id": VALID_TOKEN, "active": False})

        result = await TokenValidator(gateway).validate(VALID_TOKEN)

        assert result.is_valid is False
        assert result.error == "Token inactive or already used"

    @pytest.mark.asyncio
    async def test_unknown_token_is_reported_not_raised(self, gateway):
        gateway.request.side_effect = GatewayError(ErrorKind.NOT_FOUND, "Resource not found in Culqi", tracking_id="trk_404")

        result = await TokenValidator(gateway).validate(VALID_TOKEN)

        assert result.is_valid is False
        assert result.error == "Token not found"
        assert result.tracking_id == "trk_404"

    @pytest.mark.asyncio
    async def test_other_gateway_failures_propagate(self, gateway):
        gateway.request.side_effect = GatewayError(ErrorKind.GATEWAY_UNAVAILABLE, "down")

        with pytest.raises(GatewayError) as exc_info:
            await TokenValidator(gateway).validate(VALID_TOKEN)

        assert exc_info.value.kind is ErrorKind.GATEWAY_UNAVAILABLE
