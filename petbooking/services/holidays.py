from datetime import date, datetime
from functools import lru_cache
from typing import Optional, Union

import holidays

DateLike = Union[date, datetime]


class HolidayService:
    """Public-holiday lookups for the shop's country.

    Uses the `holidays` library; the country code comes from the
    ``HOLIDAY_COUNTRY`` setting (e.g. "BR"), optionally with a subdivision
    as ``"BR-SP"``.
    """

    @staticmethod
    @lru_cache(maxsize=16)
    def _calendar(country: str, year: int) -> holidays.HolidayBase:
        code, _, subdiv = country.partition("-")
        return holidays.country_holidays(code, subdiv=subdiv or None, years=year)

    @staticmethod
    def _as_date(value: DateLike) -> date:
        return value.date() if isinstance(value, datetime) else value

    @classmethod
    def is_holiday(cls, value: DateLike, country: str) -> bool:
        d = cls._as_date(value)
        return d in cls._calendar(country, d.year)

    @classmethod
    def get_holiday_name(cls, value: DateLike, country: str) -> Optional[str]:
        d = cls._as_date(value)
        return cls._calendar(country, d.year).get(d)
