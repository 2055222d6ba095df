"""Test calendar, slot grid, conflict check and availability endpoints."""

from httpx import AsyncClient

from tests.fixtures.booking_fixtures import MONDAY, SATURDAY, seed_appointment


class TestSchedulingAPI:
    async def test_anchors_for_open_day(self, client: AsyncClient):
        response = await client.get(
            "/api/v1/scheduling/anchors", params={"date": MONDAY.isoformat()}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_bookable"] is True
        assert data["anchors"][0] == "09:00:00"
        assert data["anchors"][-1] == "16:30:00"

    async def test_anchors_for_saturday_and_sunday(self, client: AsyncClient):
        saturday = await client.get(
            "/api/v1/scheduling/anchors", params={"date": SATURDAY.isoformat()}
        )
        sunday = await client.get(
            "/api/v1/scheduling/anchors", params={"date": "2025-06-01"}
        )

        assert saturday.json()["anchors"][-1] == "11:30:00"
        assert sunday.json()["is_bookable"] is False
        assert sunday.json()["is_open"] is False
        assert sunday.json()["anchors"] == []

    async def test_slot_grid(self, db, client: AsyncClient, shop, monday_open):
        sam_id = shop.sam.id
        await seed_appointment(db, shop, [shop.sam], "10:00", 60)

        response = await client.get(
            "/api/v1/scheduling/slots",
            params={
                "date": MONDAY.isoformat(),
                "staff_ids": [sam_id],
                "duration_minutes": 30,
            },
        )

        assert response.status_code == 200
        slots = {s["time"]: s for s in response.json()["slots"]}
        assert slots["09:30:00"]["status"] == "available"
        assert slots["10:30:00"]["status"] == "occupied"
        assert slots["10:30:00"]["busy_staff_ids"] == [sam_id]
        assert slots["11:00:00"]["status"] == "available"

    async def test_conflict_check(self, db, client: AsyncClient, shop, monday_open):
        payload = {
            "date": MONDAY.isoformat(),
            "start_time": "10:30:00",
            "primary_staff_id": shop.sam.id,
            "primary_service_id": shop.bath.id,
        }
        await seed_appointment(db, shop, [shop.sam], "10:00", 60)

        response = await client.post("/api/v1/scheduling/conflicts/check", json=payload)

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["status"] == "occupied"
        assert data["reason"]

        payload["start_time"] = "11:00:00"
        response = await client.post("/api/v1/scheduling/conflicts/check", json=payload)
        assert response.json() == {
            "ok": True,
            "reason": None,
            "status": "available",
            "overridden": False,
            "duration_minutes": 30,
            "conflicting_appointment_ids": [],
            "unavailable_staff_ids": [],
            "busy_staff_ids": [],
        }

    async def test_next_available(self, db, client: AsyncClient, shop, monday_open):
        sam_id = shop.sam.id
        await seed_appointment(db, shop, [shop.sam], "09:00", 90)

        response = await client.get(
            "/api/v1/scheduling/next-available",
            params={"staff_ids": [sam_id], "duration_minutes": 30},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["found"] is True
        assert data["slot"]["date"] == MONDAY.isoformat()
        assert data["slot"]["time"] == "10:30:00"

    async def test_next_available_none_found(self, client: AsyncClient, shop):
        response = await client.get(
            "/api/v1/scheduling/next-available",
            params={"staff_ids": [shop.vera.id], "horizon_days": 3},
        )

        assert response.status_code == 200
        assert response.json() == {"found": False, "slot": None}

    async def test_conflict_check_needs_both_secondary_fields(
        self, client: AsyncClient, shop
    ):
        response = await client.post(
            "/api/v1/scheduling/conflicts/check",
            json={
                "date": MONDAY.isoformat(),
                "start_time": "10:00:00",
                "primary_staff_id": shop.sam.id,
                "primary_service_id": shop.bath.id,
                "secondary_staff_id": shop.gabi.id,
            },
        )
        assert response.status_code == 422


class TestAvailabilityAPI:
    async def test_generate_is_idempotent(self, client: AsyncClient, shop):
        payload = {
            "staff_id": shop.sam.id,
            "start_date": MONDAY.isoformat(),
            "end_date": MONDAY.isoformat(),
        }

        first = await client.post("/api/v1/availability/generate", json=payload)
        second = await client.post("/api/v1/availability/generate", json=payload)

        assert first.status_code == 201
        assert first.json()["inserted"] == 48
        assert second.json()["inserted"] == 0

        slots = await client.get(
            f"/api/v1/availability/staff/{shop.sam.id}",
            params={"date": MONDAY.isoformat()},
        )
        assert len(slots.json()) == 48
        assert slots.json()[0]["time_slot"] == "09:00:00"

    async def test_generate_rejects_inverted_range(self, client: AsyncClient, shop):
        response = await client.post(
            "/api/v1/availability/generate",
            json={
                "staff_id": shop.sam.id,
                "start_date": SATURDAY.isoformat(),
                "end_date": MONDAY.isoformat(),
            },
        )
        assert response.status_code == 422

    async def test_unknown_staff(self, client: AsyncClient, shop):
        response = await client.get(
            "/api/v1/availability/staff/999", params={"date": MONDAY.isoformat()}
        )
        assert response.status_code == 404

    async def test_toggle_without_rows_reports_noop(self, client: AsyncClient, shop):
        response = await client.post(
            "/api/v1/availability/toggle-anchor",
            json={
                "staff_id": shop.sam.id,
                "date": MONDAY.isoformat(),
                "anchor": "10:00:00",
                "available": False,
            },
        )

        assert response.status_code == 200
        assert response.json()["affected"] == 0
        assert response.json()["noop"] is True

    async def test_misaligned_anchor(self, client: AsyncClient, shop, monday_open):
        response = await client.post(
            "/api/v1/availability/toggle-anchor",
            json={
                "staff_id": shop.sam.id,
                "date": MONDAY.isoformat(),
                "anchor": "10:10:00",
                "available": False,
            },
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    async def test_close_day_and_matrix(self, client: AsyncClient, shop, monday_open):
        sam_id, gabi_id = shop.sam.id, shop.gabi.id
        day = await client.post(
            "/api/v1/availability/day",
            json={"staff_id": sam_id, "date": MONDAY.isoformat(), "available": False},
        )
        assert day.json()["affected"] == 48

        matrix = await client.get(
            "/api/v1/availability/matrix",
            params={"date": MONDAY.isoformat(), "staff_ids": [sam_id, gabi_id]},
        )

        slots = matrix.json()["slots"]
        assert len(slots) == 48
        assert slots["09:00:00"] == {str(sam_id): False, str(gabi_id): True}

    async def test_roll(self, client: AsyncClient, shop):
        response = await client.post(
            "/api/v1/availability/roll", json={"horizon_days": 6}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["start_date"] == "2025-06-01"
        assert data["end_date"] == "2025-06-07"
        assert data["staff_count"] == 3
        assert data["inserted"] == 3 * (5 * 48 + 18)
