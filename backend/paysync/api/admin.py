"""
Admin API Endpoints

Manual reconciliation and sync statistics. Every route requires an admin
bearer token (see deps.require_admin).
"""
from fastapi import APIRouter, Depends
from typing import Dict, Any
import logging

from ..container import ServiceContainer
from ..services.identity import IdentityUser
from .deps import get_services, require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sync-orders")
async def sync_orders_endpoint(
    admin: IdentityUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    Run a reconciliation sweep now.

    Returns:
        {"success": true, "synced": int, "failed": int, "skipped": int}

    Errors:
        409 a sweep is already running
    """
    logger.info(f"Manual order sync triggered by {admin.subject}")
    result = await services.sweeper.sweep()
    return {
        "success": True,
        "synced": result.synced,
        "failed": result.failed,
        "skipped": result.skipped,
    }


@router.post("/sync-orders/{order_id}")
async def sync_single_order_endpoint(
    order_id: int,
    admin: IdentityUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """Reconcile one order against the gateway."""
    logger.info(f"Manual sync of order {order_id} triggered by {admin.subject}")
    outcome = await services.sweeper.sync_order_by_id(order_id)
    return {
        "success": True,
        "orderId": order_id,
        "result": outcome.value,
    }


@router.get("/sync-stats")
async def sync_stats_endpoint(
    admin: IdentityUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    Order counts grouped by status and provisional flag.

    Returns:
        {"success": true, "stats": [{"status": str, "isProvisional": bool, "count": int}]}
    """
    stats = await services.sweeper.get_sync_stats()
    return {
        "success": True,
        "stats": [row.model_dump(by_alias=True) for row in stats],
    }
