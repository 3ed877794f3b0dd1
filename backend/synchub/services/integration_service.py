# 租户连接上的 provider 调用：按 connection 构造 GenericIntegrationClient，token 刷新后回写连接

from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Mapping, Optional

import requests
from sqlalchemy.orm import Session, sessionmaker

from synchub.core.security import SYSTEM_ACTOR
from synchub.db.session import session_scope
from synchub.integrations.generic import GenericIntegrationClient
from synchub.repository import integration_repo
from synchub.services.errors import NotFoundError

logger = logging.getLogger(__name__)


class ConnectionNotFound(NotFoundError):
    code = "CONNECTION_NOT_FOUND"


class IntegrationService:

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        notifier=None,
        http: Optional[requests.Session] = None,
        timeout: float = 30,
        admin_email: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._session_factory = session_factory
        self.notifier = notifier
        self._http = http
        self.timeout = timeout
        self.admin_email = admin_email
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self._sleep = sleep


    def client_for(self, connection_id: int, user_id: Optional[str] = None) -> GenericIntegrationClient:
        with session_scope(self._session_factory) as db:
            conn = integration_repo.get_connection(db, connection_id, user_id)
            if conn is None:
                raise ConnectionNotFound(f"Connection {connection_id} not found")
            integration = conn.integration

        kwargs: Dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return GenericIntegrationClient(
            integration,
            conn,
            session=self._http,
            notifier=self.notifier,
            persist_connection=self._persist_connection,
            timeout=self.timeout,
            admin_email=self.admin_email,
            max_retries=self.max_retries,
            initial_delay_ms=self.initial_delay_ms,
            **kwargs,
        )


    def create_product(self, connection_id: int, product: Mapping[str, Any],
                       user_id: Optional[str] = None, actor: str = SYSTEM_ACTOR) -> Dict[str, Any]:
        """provider 返回 id 后落一条 provider_products；失败抛 ProductCreationError。"""
        client = self.client_for(connection_id, user_id)
        created = client.create_product(product)
        with session_scope(self._session_factory) as db:
            integration_repo.record_product(
                db, connection_id, str(created["id"]), product.get("sku"), dict(created), actor,
            )
        logger.info("Product created provider=%s connection=%s external_id=%s by=%s",
                    client.provider, connection_id, created["id"], actor)
        return created


    def _persist_connection(self, connection) -> None:
        with session_scope(self._session_factory) as db:
            integration_repo.save_connection(db, db.merge(connection))
