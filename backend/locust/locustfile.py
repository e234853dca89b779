"""
Locust Load Test Suite

Events and seats are created by the organizer workflow; point the test at an
existing event with LOCUST_EVENT_ID. Tokens are minted locally with the
shared SECRET_KEY.

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Contention on the same seats
  locust -f locustfile.py --tags throughput   # Test cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random
import uuid

from locust import HttpUser, task, between, tag

from app.core.security import create_access_token

EVENT_ID = int(os.getenv("LOCUST_EVENT_ID", "1"))
# Contention users only ever ask for seats from this small pool
HOT_SEAT_POOL = int(os.getenv("LOCUST_HOT_SEATS", "10"))

SEAT_IDS: list[int] = []


def auth_headers(role: str = "user") -> dict:
    token = create_access_token({"sub": f"load-{uuid.uuid4().hex[:12]}", "role": role})
    return {"Authorization": f"Bearer {token}"}


def load_seat_ids(client) -> None:
    if SEAT_IDS:
        return
    resp = client.get(f"/api/v1/seats/event/{EVENT_ID}", name="/api/v1/seats/event/{id}")
    if resp.status_code == 200:
        SEAT_IDS.extend(seat["id"] for seat in resp.json() if seat["status"] == "AVAILABLE")


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many users -> the same handful of seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify no seat was sold twice:
      SELECT seat_id, COUNT(*) FROM booked_seats b JOIN bookings k ON k.id = b.booking_id
      WHERE k.status IN ('PENDING', 'CONFIRMED') GROUP BY seat_id HAVING COUNT(*) > 1;
    Should return no rows
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = auth_headers()
        load_seat_ids(self.client)

    @tag("concurrency")
    @task
    def lock_and_book(self):
        """Lock 1-2 hot seats, book them, retry the booking once with the same key."""
        pool = SEAT_IDS[:HOT_SEAT_POOL]
        if not pool:
            return
        seats = random.sample(pool, k=min(len(pool), random.randint(1, 2)))

        with self.client.post("/api/v1/seats/lock",
            json={"event_id": EVENT_ID, "seat_ids": seats},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
                lock = resp.json()
            elif resp.status_code == 409:
                resp.success()  # Expected: someone else holds a seat
                return
            else:
                resp.failure(f"Unexpected: {resp.status_code}")
                return

        key = uuid.uuid4().hex
        body = {"event_id": EVENT_ID, "seat_ids": seats, "idempotency_key": key, "lock_id": lock["lock_id"]}
        for attempt in ("first", "retry"):
            with self.client.post("/api/v1/bookings/", json=body, headers=self.headers,
                name=f"/api/v1/bookings/ [{attempt}]", catch_response=True) as resp:
                if resp.status_code in (200, 201, 410):
                    resp.success()
                else:
                    resp.failure(f"Unexpected: {resp.status_code}")
                    return

        # Put the seats back so the fight continues
        booking_id = resp.json().get("id")
        if booking_id:
            self.client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "load test"},
                headers=self.headers, name="/api/v1/bookings/{id}/cancel")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: Stop Redis, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def availability_cached(self):
        """Hammer the cached availability endpoint."""
        self.client.get(f"/api/v1/seats/availability/{EVENT_ID}",
            name="/api/v1/seats/availability/{id} [cached]")

    @tag("throughput", "read")
    @task(5)
    def list_events_cached(self):
        page = random.randint(1, 5)
        self.client.get(f"/api/v1/events/?page={page}&page_size=20",
            name="/api/v1/events/ [cached]")

    @tag("throughput", "read")
    @task(3)
    def get_event_detail(self):
        self.client.get(f"/api/v1/events/{EVENT_ID}", name="/api/v1/events/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        """Monitor system health."""
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers()

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_event_id(self):
        """Lock seats of a non-existent event."""
        with self.client.post("/api/v1/seats/lock",
            json={"event_id": 999999, "seat_ids": [1]},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def empty_seat_list(self):
        with self.client.post("/api/v1/seats/lock",
            json={"event_id": EVENT_ID, "seat_ids": []},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def duplicate_seats(self):
        with self.client.post("/api/v1/seats/lock",
            json={"event_id": EVENT_ID, "seat_ids": [1, 1]},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def too_many_seats(self):
        """Try to lock an absurd number of seats."""
        with self.client.post("/api/v1/seats/lock",
            json={"event_id": EVENT_ID, "seat_ids": list(range(1, 50))},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [404, 409])

    @tag("edge")
    @task
    def book_without_lock(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": EVENT_ID, "seat_ids": [1], "idempotency_key": uuid.uuid4().hex},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [404, 410])

    @tag("edge")
    @task
    def malformed_json(self):
        """Send garbage data."""
        with self.client.post("/api/v1/seats/lock",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/seats/lock",
            json={"event_id": EVENT_ID, "seat_ids": [1]},
            catch_response=True
        ) as resp:
            self._expect(resp, [401])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing availability
      - Some lock -> book -> pay flows
      - Some abandoned locks (left for the sweeper)
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = auth_headers()
        load_seat_ids(self.client)

    @task(50)
    def browse(self):
        self.client.get(f"/api/v1/seats/availability/{EVENT_ID}",
            name="/api/v1/seats/availability/{id}")

    @task(10)
    def checkout(self):
        if not SEAT_IDS:
            return
        seats = random.sample(SEAT_IDS, k=min(len(SEAT_IDS), random.randint(1, 3)))
        resp = self.client.post("/api/v1/seats/lock",
            json={"event_id": EVENT_ID, "seat_ids": seats}, headers=self.headers)
        if resp.status_code != 201:
            return

        resp = self.client.post("/api/v1/bookings/",
            json={"event_id": EVENT_ID, "seat_ids": seats, "idempotency_key": uuid.uuid4().hex},
            headers=self.headers)
        if resp.status_code != 201:
            return

        self.client.post("/api/v1/payments/initiate",
            json={"booking_id": resp.json()["id"], "gateway": "STRIPE"},
            headers=self.headers)

    @task(3)
    def abandon(self):
        """Lock and walk away; the sweeper reclaims it."""
        if SEAT_IDS:
            self.client.post("/api/v1/seats/lock",
                json={"event_id": EVENT_ID, "seat_ids": [random.choice(SEAT_IDS)]},
                headers=self.headers)
