"""
   通用 provider 集成层异常类型。
   每个异常带稳定的 code + provider 名，上层（调度/API）据此决定重试还是直接失败。
"""

from __future__ import annotations
from typing import Any, Dict, Optional


class IntegrationError(Exception):
    """Base for all provider integration errors."""

    code = "INTEGRATION_ERROR"

    def __init__(self, message: str, provider: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        if code:
            self.code = code

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "provider": self.provider}


class ConfigurationError(IntegrationError):
    """Missing base URL / credentials / token URL. Never retried."""
    code = "CONFIG_ERROR"


class ApiCallError(IntegrationError):
    """Provider call failed after retries (or with a non-retryable status)."""
    code = "API_CALL_FAILED"

    def __init__(self, message: str, provider: Optional[str] = None,
                 status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message, provider)
        self.status_code = status_code
        self.retryable = retryable

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["statusCode"] = self.status_code
        return data


class TokenRefreshError(IntegrationError):
    """Refresh-token exchange failed; the connection is now needs_reauth."""
    code = "TOKEN_REFRESH_FAILED"


class MissingRefreshTokenError(IntegrationError):
    """Access token expired and no refresh token stored."""
    code = "NO_REFRESH_TOKEN"


class InvalidResponseError(IntegrationError):
    """Unexpected/invalid response payload shape or content."""
    code = "INVALID_RESPONSE"


class ProductCreationError(IntegrationError):
    """createProduct failed for any reason."""
    code = "PRODUCT_CREATION_FAILED"
