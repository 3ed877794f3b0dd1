from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from synchub.db.model.integration import ProviderIntegration, ProviderProduct, TenantConnection


_ALLOWED_TYPES = {"warehouse", "fulfillment", "payment", "analytics", "marketplace"}


# ---------- provider_integrations ----------
def get_integration_by_name(db: Session, provider_name: str) -> Optional[ProviderIntegration]:
    stmt = select(ProviderIntegration).where(ProviderIntegration.provider_name == provider_name)
    return db.scalars(stmt).first()


def create_integration(db: Session, provider_name: str, type: str, **fields) -> ProviderIntegration:
    if type not in _ALLOWED_TYPES:
        raise ValueError(f"integration type must be one of {sorted(_ALLOWED_TYPES)}")
    row = ProviderIntegration(provider_name=provider_name, type=type, **fields)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


# ---------- tenant_connections ----------
def get_connection(db: Session, connection_id: int, user_id: str | None = None) -> Optional[TenantConnection]:
    stmt = select(TenantConnection).where(TenantConnection.id == connection_id)
    if user_id is not None:
        stmt = stmt.where(TenantConnection.user_id == user_id)
    return db.scalars(stmt).first()


def create_connection(db: Session, user_id: str, integration_id: int, **fields) -> TenantConnection:
    row = TenantConnection(user_id=user_id, integration_id=integration_id, **fields)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def save_connection(db: Session, connection: TenantConnection) -> None:
    """token 刷新后回写（也用于标记 needs_reauth）。"""
    db.add(connection)
    db.commit()


# ---------- provider_products ----------
def record_product(db: Session, connection_id: int, external_id: str, sku: str | None,
                   payload: Dict[str, Any], actor: str) -> ProviderProduct:
    row = ProviderProduct(connection_id=connection_id, external_id=str(external_id), sku=sku,
                          payload=payload, created_by=actor)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row
