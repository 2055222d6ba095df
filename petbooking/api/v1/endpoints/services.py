from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.api.deps.database import get_db
from petbooking.models.service import Service
from petbooking.schemas.service import PricingResult, RequiredRolesResponse, ServiceRead
from petbooking.services.booking import derive_required_roles
from petbooking.services.pricing import PricingService

router = APIRouter()


@router.get("/", response_model=List[ServiceRead])
async def get_services(
    include_inactive: bool = Query(False, description="Include inactive services"),
    db: AsyncSession = Depends(get_db),
):
    query = select(Service).order_by(Service.name)
    if not include_inactive:
        query = query.where(Service.is_active)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/required-roles", response_model=RequiredRolesResponse)
async def get_required_roles(
    service_ids: List[int] = Query(..., description="Selected services"),
    db: AsyncSession = Depends(get_db),
):
    """Staff roles the booking flow must fill for the selected services."""
    result = await db.execute(select(Service).where(Service.id.in_(service_ids)))
    services = result.scalars().all()
    found = {service.id for service in services}
    missing = [sid for sid in service_ids if sid not in found]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Service(s) not found: {missing}",
        )
    roles = derive_required_roles(services)
    return RequiredRolesResponse(
        service_ids=service_ids, required_roles=[role.value for role in roles]
    )


@router.get("/{service_id}/price", response_model=PricingResult)
async def get_service_price(
    service_id: int,
    breed: Optional[str] = Query(None),
    size: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Price and duration for a pet of the given breed and size."""
    result = await db.execute(select(Service).where(Service.id == service_id))
    service = result.scalar_one_or_none()
    if not service:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Service not found"
        )
    return await PricingService(db).resolve(service, breed, size)
