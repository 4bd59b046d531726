"""Pricing advisor."""

from __future__ import annotations

from datetime import timedelta

import pytest

from attendmint.models.records import PricingFactors
from attendmint.services.pricing import analyze_factors, recommend, should_apply

from tests.factories import EVENT_START, iso, make_event


def _factors(hours=1000.0, sold_ratio=0.0, recent=0, base=1.0):
    return PricingFactors(
        base_price=base,
        time_to_event_hours=hours,
        sold_ratio=sold_ratio,
        recent_sales=recent,
        popularity=min(1.0, recent / 10),
    )


def test_analyze_factors():
    now = EVENT_START - timedelta(hours=48)
    event = make_event(total_tickets=10, tickets_sold=4)
    purchases = [
        iso(now - timedelta(days=1)),
        iso(now - timedelta(days=6)),
        iso(now - timedelta(days=8)),  # outside the 7 day window
    ]

    factors = analyze_factors(event, purchases, now=now)

    assert factors.time_to_event_hours == pytest.approx(48.0)
    assert factors.sold_ratio == pytest.approx(0.4)
    assert factors.recent_sales == 2
    assert factors.popularity == pytest.approx(0.2)


def test_past_event_has_zero_hours():
    factors = analyze_factors(make_event(), [], now=EVENT_START + timedelta(days=1))
    assert factors.time_to_event_hours == 0.0


def test_zero_capacity_counts_as_sold_out():
    factors = analyze_factors(make_event(total_tickets=0), [], now=EVENT_START)
    assert factors.sold_ratio == 1.0


def test_low_demand_discount():
    rec = recommend(_factors(sold_ratio=0.1))

    assert rec.suggested_price == pytest.approx(0.9)
    assert rec.demand_level == "low"
    assert rec.confidence == 0.7
    assert not should_apply(rec)


def test_steady_demand():
    rec = recommend(_factors(sold_ratio=0.5))
    assert rec.suggested_price == pytest.approx(1.1)
    assert rec.demand_level == "medium"
    assert rec.confidence == 0.8
    assert not should_apply(rec)


def test_rising_demand_near_term():
    rec = recommend(_factors(hours=100, sold_ratio=0.7))

    assert rec.suggested_price == pytest.approx(1.2 * 1.4)
    assert rec.demand_level == "high"
    assert rec.confidence == 0.9
    assert should_apply(rec)


def test_scarcity_last_minute_with_popularity():
    rec = recommend(_factors(hours=5, sold_ratio=0.9, recent=8))

    assert rec.suggested_price == pytest.approx(round(1.5 * 1.8 * 1.3, 4))
    assert rec.demand_level == "critical"
    assert rec.confidence == pytest.approx(0.98)
    assert rec.reasoning.endswith("high popularity bonus")


def test_price_is_rounded():
    rec = recommend(_factors(base=0.033333, sold_ratio=0.5))
    assert rec.suggested_price == round(0.033333 * 1.1, 4)
