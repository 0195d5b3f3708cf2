"""
API dependencies
"""
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.services.catalog import ProductRepository
from app.services.cj.client import CJAPIClient
from app.services.shipping_validation import ShippingValidationService


def get_cj_client(request: Request) -> CJAPIClient:
    """CJ client created in the app lifespan."""
    client = getattr(request.app.state, "cj_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dropship provider client not initialized",
        )
    return client


def get_shipping_service(
    db: AsyncSession = Depends(get_db),
    client: CJAPIClient = Depends(get_cj_client),
) -> ShippingValidationService:
    return ShippingValidationService(client, ProductRepository(db))
