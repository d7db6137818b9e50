"""Pure functions that turn a tick and its predecessor into display metadata."""

from __future__ import annotations

import time

from .models import (
    AnimationState,
    DisplayColor,
    EnrichedRecord,
    FormattedPrice,
    RawTick,
    Trend,
)

MISSING_VALUE = "N/A"


def calculate_trend(current: RawTick, previous: RawTick | None) -> Trend:
    """Direction of the price versus the previous tick for the same symbol."""
    if previous is None:
        return Trend.UNKNOWN
    if current.price > previous.price:
        return Trend.UP
    if current.price < previous.price:
        return Trend.DOWN
    return Trend.NEUTRAL


def determine_animation_state(current: RawTick, previous: RawTick | None) -> AnimationState:
    """Pulse to play for this update. There is no decay; the next tick overwrites it."""
    if previous is None:
        return AnimationState.IDLE
    if current.price > previous.price:
        return AnimationState.FLASH_GREEN
    if current.price < previous.price:
        return AnimationState.FLASH_RED
    return AnimationState.UPDATING


def determine_display_color(tick: RawTick) -> DisplayColor:
    """Colour from the tick's own change field (vs. previous close), not the tick delta."""
    if tick.change > 0:
        return DisplayColor.GAIN
    if tick.change < 0:
        return DisplayColor.LOSS
    return DisplayColor.NEUTRAL


def format_currency(value: float | None) -> str:
    """US dollars with grouping and two decimals: 1234.5 -> '$1,234.50', -1.2 -> '-$1.20'."""
    if value is None:
        return MISSING_VALUE
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_signed_currency(value: float) -> str:
    """Currency with an explicit '+' for zero and gains: '+$2.30', '-$1.20'."""
    formatted = format_currency(value)
    return formatted if value < 0 else f"+{formatted}"


def format_percent(fraction: float) -> str:
    """Signed percentage with two decimals from a fraction: 0.0153 -> '+1.53%'."""
    return f"{fraction:+,.2%}"


def format_price_data(tick: RawTick) -> FormattedPrice:
    return FormattedPrice(
        price=format_currency(tick.price),
        change=format_signed_currency(tick.change),
        # change_percent arrives as a whole-number percentage
        change_percent=format_percent(tick.change_percent / 100),
        high=format_currency(tick.day_high),
        low=format_currency(tick.day_low),
    )


def enrich(
    tick: RawTick,
    previous: RawTick | None = None,
    received_at: float | None = None,
) -> EnrichedRecord:
    """Build the complete EnrichedRecord for ``tick`` in one step."""
    return EnrichedRecord(
        symbol=tick.symbol,
        price=tick.price,
        change=tick.change,
        change_percent=tick.change_percent,
        day_high=tick.day_high,
        day_low=tick.day_low,
        source_timestamp=tick.source_timestamp,
        source_id=tick.source_id,
        ingest_timestamp=tick.ingest_timestamp,
        previous_price=previous.price if previous is not None else None,
        trend=calculate_trend(tick, previous),
        animation_state=determine_animation_state(tick, previous),
        display_color=determine_display_color(tick),
        formatted=format_price_data(tick),
        last_updated=received_at if received_at is not None else time.time(),
    )
