"""
通用 provider HTTP 客户端：一个实例 = 一个 (provider 配置, 租户连接)
  - 鉴权：OAuth Bearer（过期先用 refresh_token 换新）/ APIKey（X-API-Key）/ Basic
  - 重试：仅 429 / 5xx，delay = initial_delay * 2^retry_count；其它错误直接抛
  - 成功：按 response_mapping 映射字段；带 webhook_event 时转发给租户的单一回调地址
  - 最终失败：payment 类集成必须给管理员发告警邮件
"""

from __future__ import annotations
import base64, logging, time, uuid
from datetime import timedelta
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from synchub.integrations.generic.errors import (
    ApiCallError, ConfigurationError, IntegrationError, InvalidResponseError,
    MissingRefreshTokenError, ProductCreationError, TokenRefreshError,
)
from synchub.integrations.generic.response_mapper import ResponseMapper
from synchub.utils.backoff import exponential_delay
from synchub.utils.clock import ensure_utc, isoformat, now_utc

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 1000


class GenericIntegrationClient:

    def __init__(
        self,
        integration,
        connection,
        *,
        session: Optional[requests.Session] = None,
        notifier=None,
        persist_connection: Optional[Callable[[Any], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = DEFAULT_TIMEOUT,
        admin_email: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
    ) -> None:
        """integration / connection 是 ProviderIntegration / TenantConnection（ORM 或同字段对象）。"""
        self.integration = integration
        self.connection = connection
        self.provider = integration.provider_name
        self.request_id = uuid.uuid4().hex

        self._session = session or requests.Session()
        self._notifier = notifier
        self._persist_connection = persist_connection
        self._sleep = sleep
        self.timeout = timeout
        self.admin_email = admin_email

        # 集成自身配置优先，其次构造参数，最后默认值
        self.max_retries = _first_not_none(integration.max_retries, max_retries, DEFAULT_MAX_RETRIES)
        self.initial_delay_ms = _first_not_none(integration.initial_delay_ms, initial_delay_ms, DEFAULT_INITIAL_DELAY_MS)
        self.mapper = ResponseMapper(integration.response_mapping)



    # ---------- Public ----------
    def call_api(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        webhook_event: Optional[str] = None,
        retry_count: int = 0,
    ) -> Any:
        """返回映射后的响应；失败抛 IntegrationError 子类。"""
        method = method.upper()
        while True:
            try:
                raw = self._request(method, endpoint, params=params, body=body, headers=headers)
            except ApiCallError as e:
                logger.error(
                    "API call failed provider=%s endpoint=%s method=%s status=%s retry=%d request_id=%s: %s",
                    self.provider, endpoint, method, e.status_code, retry_count, self.request_id, e.message,
                )
                if e.retryable and retry_count < self.max_retries:
                    delay = exponential_delay(self.initial_delay_ms / 1000.0, retry_count)
                    logger.info("Retrying %s %s in %.2fs (attempt %d/%d)",
                                method, endpoint, delay, retry_count + 1, self.max_retries)
                    self._sleep(delay)
                    retry_count += 1
                    continue
                self._alert_terminal_failure(e)
                raise
            except IntegrationError as e:
                # 配置/鉴权错误：不重试
                logger.error("API call aborted provider=%s endpoint=%s request_id=%s: %s",
                             self.provider, endpoint, self.request_id, e)
                self._alert_terminal_failure(e)
                raise

            mapped = self.mapper.apply(raw)
            logger.info("API call successful provider=%s type=%s endpoint=%s method=%s request_id=%s",
                        self.provider, self.integration.type, endpoint, method, self.request_id)

            if webhook_event:
                self._forward_webhook(webhook_event, mapped)
            return mapped


    def create_product(self, product: Mapping[str, Any]) -> Dict[str, Any]:
        endpoint = (self.integration.api_endpoints or {}).get("products") or "/products"
        try:
            response = self.call_api(endpoint, "POST", body=dict(product), webhook_event="product created")
            if not isinstance(response, Mapping) or not response.get("id"):
                raise InvalidResponseError("No product ID returned from integration", self.provider)
            return {**response, "id": response["id"]}
        except IntegrationError as e:
            logger.error("Failed to create product provider=%s request_id=%s: %s", self.provider, self.request_id, e)
            raise ProductCreationError(
                f"Failed to create product for {self.provider}: {e.message}", self.provider
            ) from e


    def refresh_access_token(self) -> None:
        """refresh_token 换新 access_token；失败把连接标为 needs_reauth 并抛 TokenRefreshError。"""
        conn = self.connection
        try:
            if not conn.refresh_token:
                raise MissingRefreshTokenError("No refresh token available", self.provider)
            token_url = self.integration.token_url
            if not token_url:
                raise ConfigurationError("Token URL not configured", self.provider)

            creds = self.integration.credentials or {}
            form = {
                "grant_type": "refresh_token",
                "refresh_token": conn.refresh_token,
                "client_id": creds.get("clientId"),
                "client_secret": creds.get("clientSecret") or "",
            }
            headers = {"Content-Type": "application/x-www-form-urlencoded", "X-Request-ID": self.request_id}
            try:
                resp = self._session.post(token_url, data=form, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                raise ApiCallError(f"token request error: {e}", self.provider) from e
            if resp.status_code >= 400:
                raise ApiCallError(f"token endpoint returned {resp.status_code}: {_snippet(resp)}",
                                   self.provider, status_code=resp.status_code)

            data = self._as_json(resp)
            access_token = data.get("access_token") if isinstance(data, Mapping) else None
            if not access_token:
                raise InvalidResponseError("token response missing access_token", self.provider)

            conn.access_token = access_token
            if data.get("refresh_token"):
                conn.refresh_token = data["refresh_token"]
            expires_in = data.get("expires_in")
            conn.expires_at = now_utc() + timedelta(seconds=float(expires_in)) if expires_in else None
            conn.status = "connected"
            self._save_connection()
            logger.info("Token refreshed provider=%s expires_at=%s", self.provider, isoformat(conn.expires_at))

        except IntegrationError as e:
            conn.status = "needs_reauth"
            self._save_connection()
            logger.error("Failed to refresh token provider=%s request_id=%s: %s", self.provider, self.request_id, e)
            raise TokenRefreshError(f"Token refresh failed for {self.provider}: {e.message}", self.provider) from e



    # ---------- Internals ----------
    def _request(self, method: str, endpoint: str, *, params=None, body=None, headers=None) -> Any:
        url = self._resolve_url(endpoint)

        if self._token_expired():
            self.refresh_access_token()

        merged = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Request-ID": self.request_id,
            **self._auth_headers(),
            **(headers or {}),
        }
        try:
            resp = self._session.request(method, url, params=params, json=body, headers=merged, timeout=self.timeout)
        except requests.RequestException as e:
            # 超时/连接错误：没有状态码，不在重试范围内
            raise ApiCallError(f"API call failed for {self.provider}: {e}", self.provider) from e

        if resp.status_code >= 400:
            status = resp.status_code
            raise ApiCallError(
                f"API call failed for {self.provider}: {status} {_error_message(resp)}",
                self.provider,
                status_code=status,
                retryable=status == 429 or 500 <= status < 600,
            )
        if not resp.content:
            return {}
        return self._as_json(resp)


    def _resolve_url(self, endpoint: str) -> str:
        if endpoint.startswith("https://"):
            return endpoint
        base_url = self.integration.api_url
        if not base_url:
            raise ConfigurationError(
                f"Base URL not configured for {self.provider} ({self.integration.type})", self.provider
            )
        return base_url.rstrip("/") + "/" + endpoint.lstrip("/")


    def _token_expired(self) -> bool:
        if self.integration.auth_type != "OAuth":
            return False
        conn = self.connection
        expires_at = ensure_utc(conn.expires_at)
        if expires_at is not None and expires_at <= now_utc():
            return True
        # 只有 refresh_token（例如 Amazon LWA 首次调用）
        return not conn.access_token and bool(conn.refresh_token)


    def _auth_headers(self) -> Dict[str, str]:
        auth_type = self.integration.auth_type
        creds = self.integration.credentials or {}

        if auth_type == "OAuth":
            if not self.connection.access_token:
                raise ConfigurationError(f"OAuth access token not available for {self.provider}", self.provider)
            return {"Authorization": f"Bearer {self.connection.access_token}"}

        if auth_type == "APIKey":
            api_key = creds.get("apiKey")
            if not api_key:
                raise ConfigurationError(f"API Key not configured for {self.provider}", self.provider)
            return {"X-API-Key": api_key}

        if auth_type == "Basic":
            client_id, client_secret = creds.get("clientId"), creds.get("clientSecret")
            if not client_id or not client_secret:
                raise ConfigurationError(
                    f"Client ID or Client Secret not configured for {self.provider}", self.provider
                )
            raw = f"{client_id}:{client_secret}".encode("utf-8")
            return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}

        return {}


    def _as_json(self, resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"non-JSON response (status={resp.status_code}): {_snippet(resp)}", self.provider
            ) from e


    def _forward_webhook(self, event: str, data: Any) -> None:
        conn = self.connection
        if not (conn.webhook_enabled and conn.webhook_url) or self._notifier is None:
            return
        self._notifier.send_webhook(
            {"url": conn.webhook_url, "headers": {"X-Webhook-Secret": conn.webhook_secret or ""}},
            {
                "event": event,
                "provider": self.provider,
                "data": data,
                "timestamp": isoformat(now_utc()),
                "requestId": self.request_id,
            },
        )


    def _alert_terminal_failure(self, error: IntegrationError) -> None:
        if self.integration.type != "payment":
            return
        if not self.admin_email:
            raise ConfigurationError("Admin email not configured", self.provider) from error
        if self._notifier is None:
            logger.error("Payment integration %s failed and no notifier is wired: %s", self.provider, error)
            return
        self._notifier.send_email(
            [self.admin_email],
            f"Critical Integration Failure: {self.provider}",
            {
                "provider": self.provider,
                "type": self.integration.type,
                "error": error.message,
                "requestId": self.request_id,
            },
        )


    def _save_connection(self) -> None:
        if self._persist_connection is not None:
            self._persist_connection(self.connection)



def _first_not_none(*values):
    for v in values:
        if v is not None:
            return v
    return None


def _snippet(resp: requests.Response, limit: int = 300) -> str:
    return (resp.text or "")[:limit]


def _error_message(resp: requests.Response) -> str:
    """优先取 JSON body 里的 message 字段。"""
    try:
        data = resp.json()
    except ValueError:
        return _snippet(resp)
    if isinstance(data, Mapping):
        for key in ("message", "error", "error_description"):
            if isinstance(data.get(key), str):
                return data[key]
    return _snippet(resp)
