"""
Admin endpoints (audit trail queries and integrity checks)
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException

from .auth import ExchangeSystem, get_exchange_system, require_roles
from .schemas import serialize
from ..audit import AuditEventType
from ..config import get_config
from ..users import Role


router = APIRouter()

manager = require_roles(Role.MANAGER)


@router.get("/audit")
async def list_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
) -> Dict[str, Any]:
    """Audit events, filtered by entity or by event type, newest first"""
    if entity_type and entity_id:
        events = system.audit_trail.get_events_for_entity(entity_type, entity_id)
    elif event_type:
        try:
            events = system.audit_trail.get_events_by_type(AuditEventType(event_type))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown event type: {event_type}")
    else:
        events = system.audit_trail.get_all_events()
    events = list(reversed(events))[:limit]
    return {"events": serialize(events), "total": system.audit_trail.count_events()}


@router.get("/audit/verify")
async def verify_audit_trail(
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
) -> Dict[str, Any]:
    """Check the audit hash chain for tampering"""
    return serialize(system.audit_trail.verify_integrity())


@router.get("/config")
async def get_runtime_config(user_id: str = Depends(manager)) -> Dict[str, Any]:
    """Business settings in effect; secrets are never returned"""
    config = get_config()
    return {
        "database_backend": config.database_url.split(":", 1)[0],
        "auth_enabled": config.auth_enabled,
        "validation_threshold": config.validation_threshold,
        "recent_transactions_window": config.recent_transactions_window,
        "default_rate_to_usd": config.default_rate_to_usd,
        "default_rate_to_lyd": config.default_rate_to_lyd,
        "audit_logging": config.enable_audit_logging,
    }
