"""Pricing advisor - dynamic ticket price suggestions from sales signals."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from attendmint.models.entities import Event, parse_ts
from attendmint.models.records import PricingFactors, PricingRecommendation

log = logging.getLogger(__name__)

RECENT_SALES_WINDOW = timedelta(days=7)
POPULARITY_SALES = 10  # recent sales that count as fully popular
AUTO_APPLY_CONFIDENCE = 0.8


def analyze_factors(
    event: Event,
    purchase_dates: Iterable[str],
    now: datetime | None = None,
) -> PricingFactors:
    now = now or datetime.now(timezone.utc)
    hours = max(0.0, (parse_ts(event.date) - now).total_seconds() / 3600)
    sold_ratio = event.tickets_sold / event.total_tickets if event.total_tickets else 1.0
    recent = sum(1 for d in purchase_dates if now - parse_ts(d) <= RECENT_SALES_WINDOW)
    return PricingFactors(
        base_price=event.base_price,
        time_to_event_hours=hours,
        sold_ratio=sold_ratio,
        recent_sales=recent,
        popularity=min(1.0, recent / POPULARITY_SALES),
    )


def recommend(factors: PricingFactors) -> PricingRecommendation:
    """Scale the base price by urgency, scarcity and popularity."""
    multiplier = 1.0
    confidence = 0.8
    reasoning = "Standard pricing"
    demand = "medium"

    # Urgency
    if factors.time_to_event_hours < 24:
        multiplier *= 1.5
        reasoning = "Last-minute urgency pricing"
        demand = "critical"
    elif factors.time_to_event_hours < 168:
        multiplier *= 1.2
        reasoning = "Near-term event premium"
        demand = "high"

    # Scarcity (overrides the urgency label)
    if factors.sold_ratio > 0.8:
        multiplier *= 1.8
        reasoning = "High demand - limited availability"
        demand = "critical"
        confidence = 0.95
    elif factors.sold_ratio > 0.6:
        multiplier *= 1.4
        reasoning = "Rising demand detected"
        demand = "high"
        confidence = 0.9
    elif factors.sold_ratio > 0.3:
        multiplier *= 1.1
        reasoning = "Steady demand"
        demand = "medium"
    else:
        multiplier *= 0.9
        reasoning = "Low demand - promotional pricing"
        demand = "low"
        confidence = 0.7

    if factors.popularity > 0.7:
        multiplier *= 1.3
        reasoning += " + high popularity bonus"
        confidence = min(0.98, confidence + 0.1)

    return PricingRecommendation(
        suggested_price=round(max(0.0, factors.base_price * multiplier), 4),
        confidence=confidence,
        reasoning=reasoning,
        demand_level=demand,
        factors=factors,
    )


def should_apply(recommendation: PricingRecommendation) -> bool:
    return recommendation.confidence > AUTO_APPLY_CONFIDENCE
