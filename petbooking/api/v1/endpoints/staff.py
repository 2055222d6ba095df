from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.api.deps.database import get_db
from petbooking.models.staff import Staff, StaffRole
from petbooking.schemas.staff import StaffRead

router = APIRouter()

_ROLE_COLUMNS = {
    StaffRole.BATHING: Staff.can_bathe,
    StaffRole.GROOMING: Staff.can_groom,
    StaffRole.VETERINARY: Staff.can_vet,
}


@router.get("/", response_model=List[StaffRead])
async def get_staff(
    role: Optional[StaffRole] = Query(None, description="Only staff with this role"),
    location: Optional[str] = Query(None),
    include_inactive: bool = Query(False, description="Include inactive staff members"),
    db: AsyncSession = Depends(get_db),
):
    query = select(Staff).order_by(Staff.name)
    if not include_inactive:
        query = query.where(Staff.is_active)
    if role is not None:
        query = query.where(_ROLE_COLUMNS[role])
    if location:
        query = query.where(Staff.location == location)
    result = await db.execute(query)
    return result.scalars().all()
