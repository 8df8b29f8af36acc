"""
Products API Endpoints

Catalog used by the checkout page to pick a product before creating a
payment intent. Prices are integer minor units.
"""
from fastapi import APIRouter, Depends
from typing import Dict, Any
import logging

from ..container import ServiceContainer
from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_products_endpoint(
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    List catalog products.

    Returns:
        {
            "count": int,
            "products": [{"id", "name", "description", "price", "currency"}]
        }
    """
    products = await services.store.list_products()
    logger.debug(f"Listing {len(products)} products")
    return {
        "count": len(products),
        "products": [p.model_dump(mode="json", by_alias=True) for p in products],
    }
