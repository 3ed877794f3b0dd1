"""
进程级 provider 注册表：启动时按环境变量构造 adapter，缺变量的 provider 直接不注册
"""

from __future__ import annotations
import logging
from typing import Dict, Iterable, Optional

from synchub.integrations.providers.amazon import AmazonFBAAdapter
from synchub.integrations.providers.base import ProviderAdapter
from synchub.integrations.providers.shipbob import ShipBobAdapter
from synchub.services.errors import ProviderNotConfigured

logger = logging.getLogger(__name__)


class ProviderRegistry:

    def __init__(self, adapters: Optional[Iterable[ProviderAdapter]] = None):
        self._adapters: Dict[str, ProviderAdapter] = {}
        for adapter in adapters or ():
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> Optional[ProviderAdapter]:
        return self._adapters.get(name)

    def require(self, name: str) -> ProviderAdapter:
        adapter = self._adapters.get(name)
        if adapter is None:
            raise ProviderNotConfigured(f"Fulfillment provider {name} not configured")
        return adapter

    def names(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, name: str) -> bool:
        return name in self._adapters


    @classmethod
    def from_settings(cls, cfg, **client_kwargs) -> "ProviderRegistry":
        """client_kwargs 透传给 GenericIntegrationClient（session / notifier / timeout / admin_email）。"""
        registry = cls()

        if cfg.SHIPBOB_API_KEY:
            registry.register(ShipBobAdapter.create(cfg.SHIPBOB_API_KEY, cfg.SHIPBOB_API_URL, **client_kwargs))
        else:
            logger.info("SHIPBOB_API_KEY not set; shipbob provider disabled")

        if cfg.AMAZON_REFRESH_TOKEN and cfg.AMAZON_CLIENT_ID and cfg.AMAZON_CLIENT_SECRET:
            try:
                registry.register(AmazonFBAAdapter.create(
                    refresh_token=cfg.AMAZON_REFRESH_TOKEN,
                    client_id=cfg.AMAZON_CLIENT_ID,
                    client_secret=cfg.AMAZON_CLIENT_SECRET,
                    region=cfg.AMAZON_REGION,
                    token_url=cfg.AMAZON_TOKEN_URL,
                    marketplace_id=cfg.AMAZON_MARKETPLACE_ID,
                    sandbox=cfg.PROVIDERS_SANDBOX,
                    **client_kwargs,
                ))
            except ValueError as e:
                logger.error("Amazon provider disabled: %s", e)
        else:
            logger.info("Amazon LWA credentials not set; amazon provider disabled")

        logger.info("Provider registry ready: %s", registry.names())
        return registry
