from gateway_sync.core.config import get_settings
from gateway_sync.integrations.culqi import CulqiClient


def get_gateway_client() -> CulqiClient:
    return CulqiClient.from_settings(get_settings())
