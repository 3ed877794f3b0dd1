from .errors import (
    ApiCallError, ConfigurationError, IntegrationError, InvalidResponseError,
    MissingRefreshTokenError, ProductCreationError, TokenRefreshError,
)
from .http_client import GenericIntegrationClient
from .response_mapper import ResponseMapper, lookup_path

__all__ = [
    "GenericIntegrationClient", "ResponseMapper", "lookup_path",
    "IntegrationError", "ConfigurationError", "ApiCallError", "TokenRefreshError",
    "MissingRefreshTokenError", "InvalidResponseError", "ProductCreationError",
]
