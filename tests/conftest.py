"""Pytest configuration and fixtures."""

import asyncio
from datetime import date, datetime, timedelta

import pytest

from dispatch_invoicing.schemas import (
    DeliveryOrder,
    Invoice,
    InvoiceGenerationSettings,
    InvoiceItem,
    RouteType,
)


class FakeCalculator:
    """Async distance collaborator for tests.

    Returns ``distances[last address]`` (or ``default``), raises for any
    route touching an address in ``fail_for`` and records every call.
    """

    def __init__(self, distances=None, default=12.0, fail_for=(), delays=None):
        self.distances = distances or {}
        self.default = default
        self.fail_for = set(fail_for)
        self.delays = delays or {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, addresses):
        self.calls.append(list(addresses))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(addresses[-1], 0.001))
            if self.fail_for.intersection(addresses):
                raise RuntimeError("address not found")
            return self.distances.get(addresses[-1], self.default)
        finally:
            self.in_flight -= 1


@pytest.fixture
def make_order():
    """Factory for complete delivery orders; override any field by keyword."""

    def _make(order_id, **overrides):
        ready = datetime(2024, 3, 4, 9, 0)
        data = {
            "id": order_id,
            "driver": "Alice",
            "pickup": "100 Main St, Springfield",
            "dropoff": f"{order_id} Oak Ave, Springfield",
            "trip_number": None,
            "ex_ready_time": ready,
            "ex_delivery_time": ready + timedelta(hours=1),
        }
        data.update(overrides)
        return DeliveryOrder(**data)

    return _make


@pytest.fixture
def scenario_orders(make_order):
    """Two orders on trip TR-100 and three singles, one missing its dropoff."""
    return [
        make_order("A1", trip_number="TR-100"),
        make_order("A2", trip_number="TR-100"),
        make_order("B1", trip_number="TR-201", driver="Bob"),
        make_order("C1", trip_number="TR-202", driver="Bob"),
        make_order("D1", trip_number="TR-203", dropoff=None),
    ]


@pytest.fixture
def fake_calculator():
    """Distance collaborator returning 12 miles for every route."""
    return FakeCalculator()


@pytest.fixture
def default_settings():
    return InvoiceGenerationSettings()


@pytest.fixture
def sample_invoice(default_settings):
    """Draft invoice with a 10 mi single route and a 20 mi, 3-stop route."""
    items = [
        InvoiceItem(
            route_key="TR-201",
            trip_number="TR-201",
            order_id="B1",
            order_ids=["B1"],
            driver="Bob",
            distance=10.0,
            route_type=RouteType.SINGLE,
            stops=1,
            base_cost=25.0,
            add_ons=0.0,
            total_cost=25.0,
        ),
        InvoiceItem(
            route_key="TR-100",
            trip_number="TR-100",
            order_id="TR-100",
            order_ids=["A1", "A2", "A3"],
            driver="Alice",
            distance=20.0,
            route_type=RouteType.MULTI_STOP,
            stops=3,
            base_cost=22.0,
            add_ons=24.0,
            total_cost=46.0,
        ),
    ]
    return Invoice(
        id="INV-TEST0001",
        invoice_date=date(2024, 3, 10),
        invoice_number="INV-2024-03-001",
        items=items,
        last_modified=datetime(2024, 3, 10, 12, 0),
        settings=default_settings,
    )


@pytest.fixture
def calculator_factory():
    """The FakeCalculator class, for tests that need custom distances or failures."""
    return FakeCalculator
