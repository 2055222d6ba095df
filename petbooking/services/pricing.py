import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from petbooking.models.service import Service
from petbooking.models.service_pricing import ServicePricing
from petbooking.schemas.service import PriceSource, PricingResult

logger = logging.getLogger(__name__)


class PricingService:
    """Resolve a service's price and duration for a given breed and size.

    Lookup order: exact breed + size entry, then a size-only entry, then the
    service's own defaults.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(
        self, service: Service, breed: Optional[str] = None, size: Optional[str] = None
    ) -> PricingResult:
        entry = None
        source = PriceSource.SERVICE_DEFAULT

        if breed and size:
            entry = await self._find_entry(service.id, breed, size)
            if entry is not None:
                source = PriceSource.EXACT_MATCH

        if entry is None and size:
            entry = await self._find_entry(service.id, None, size)
            if entry is not None:
                source = PriceSource.SIZE_FALLBACK

        result = self.apply_entry(service, entry, source)
        logger.debug(
            f"Pricing for service {service.id} (breed={breed}, size={size}): "
            f"{result.price} / {result.duration_minutes}min from {result.price_source.value}"
        )
        return result

    @staticmethod
    def apply_entry(
        service: Service,
        entry: Optional[ServicePricing],
        source: PriceSource = PriceSource.SERVICE_DEFAULT,
    ) -> PricingResult:
        """Merge a price-list entry over the service defaults.

        A listed price of 0 is a real price. A listed duration is only used
        when it is set and positive.
        """
        if entry is None:
            return PricingResult(
                service_id=service.id,
                price=Decimal(service.base_price),
                duration_minutes=service.default_duration,
                price_source=PriceSource.SERVICE_DEFAULT,
            )

        price = (
            Decimal(entry.price) if entry.price is not None else Decimal(service.base_price)
        )
        if entry.duration_override is not None and entry.duration_override > 0:
            duration = entry.duration_override
        else:
            duration = service.default_duration

        return PricingResult(
            service_id=service.id,
            price=price,
            duration_minutes=duration,
            price_source=source,
        )

    async def _find_entry(
        self, service_id: int, breed: Optional[str], size: str
    ) -> Optional[ServicePricing]:
        """Exact breed row, or with ``breed=None`` any row for the size.

        Breed-less rows win the size fallback over other breeds' rows.
        """
        conditions = [
            ServicePricing.service_id == service_id,
            ServicePricing.size == size,
        ]
        if breed is not None:
            conditions.append(ServicePricing.breed == breed)

        query = (
            select(ServicePricing)
            .where(and_(*conditions))
            .order_by(ServicePricing.breed.isnot(None), ServicePricing.id)
            .limit(1)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()
