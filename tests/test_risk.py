from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from api.services.risk import (
    BehaviorProfile,
    GeoLocation,
    RiskAssessmentService,
    SecurityEvent,
    behavioral_risk,
    device_risk,
    geographical_risk,
    haversine_km,
    is_impossible_travel,
    overall_score,
    risk_level,
    temporal_risk,
    transactional_risk,
)

LONDON = GeoLocation(country="GB", city="London", latitude=51.5074, longitude=-0.1278)
PARIS = GeoLocation(country="FR", city="Paris", latitude=48.8566, longitude=2.3522)
NEW_YORK = GeoLocation(country="US", city="New York", latitude=40.7128, longitude=-74.0060)

# A Wednesday at noon: neither night nor weekend.
MIDWEEK_NOON = datetime(2026, 3, 4, 12, 0, 0, tzinfo=timezone.utc)


def _event(offset_seconds: float = 0, **overrides) -> SecurityEvent:
    values = {
        "type": "login_attempt",
        "user_id": "usr_sales",
        "ip_address": "10.0.0.1",
        "timestamp": MIDWEEK_NOON + timedelta(seconds=offset_seconds),
    }
    values.update(overrides)
    return SecurityEvent(**values)


def test_haversine_london_paris() -> None:
    assert 340 < haversine_km(LONDON, PARIS) < 347
    assert haversine_km(PARIS, PARIS) == 0


def test_impossible_travel_depends_on_speed() -> None:
    in_new_york = _event(location=NEW_YORK)

    assert is_impossible_travel(in_new_york, _event(3600, location=LONDON))
    assert not is_impossible_travel(in_new_york, _event(10 * 3600, location=LONDON))


def test_impossible_travel_with_zero_elapsed_time() -> None:
    assert is_impossible_travel(_event(location=LONDON), _event(location=PARIS))
    assert not is_impossible_travel(_event(location=PARIS), _event(location=PARIS))


def test_events_without_location_are_never_impossible() -> None:
    assert not is_impossible_travel(_event(), _event(location=PARIS))


def test_geographical_risk_flags_countries_and_travel() -> None:
    events = [_event(0, location=NEW_YORK), _event(1800, location=LONDON), _event(3600, location=PARIS)]

    # three countries (+30) and one impossible hop (+40)
    assert geographical_risk(events) == 70


def test_behavioral_risk_counts_failed_logins_and_profile() -> None:
    failures = [_event(index * 300, success=False) for index in range(4)]
    assert behavioral_risk(failures) == 15

    flagged = [_event(0, flagged_as_anomaly=True), _event(600)]
    profile = BehaviorProfile(anomaly_count=11, high_risk_actions=6, suspicious_patterns=["a", "b", "c", "d"])
    assert behavioral_risk(flagged, profile) == 20 + 20 + 15 + 10


def test_transactional_risk_amounts_and_failure_streak() -> None:
    events = [
        _event(0, type="transaction", success=False),
        _event(60, type="transaction", success=False),
        _event(120, type="transaction", success=False),
        _event(180, type="transaction", metadata={"amount": 60000}),
    ]

    # largest > 50k (+30), average > 5k (+15), three failures then success (+20)
    assert transactional_risk(events) == 65
    assert transactional_risk([_event()]) == 0


def test_temporal_burst_includes_final_run() -> None:
    burst_of_21 = [_event(index * 10) for index in range(21)]
    burst_of_20 = [_event(index * 10) for index in range(20)]

    assert temporal_risk(burst_of_21) == 25
    assert temporal_risk(burst_of_20) == 15


def test_device_risk_flags_bot_agents() -> None:
    assert device_risk([_event(user_agent="Mozilla/5.0")]) == 0
    assert device_risk([_event(user_agent="python-requests crawler/1.0")]) == 25


def test_overall_score_is_weighted_sum() -> None:
    factors = {"behavioral": 100, "transactional": 0, "geographical": 50, "device": 0, "temporal": 100}

    assert overall_score(factors) == pytest.approx(50)


def test_risk_level_thresholds() -> None:
    assert risk_level(80) == "very_high"
    assert risk_level(79.9) == "high"
    assert risk_level(60) == "high"
    assert risk_level(40) == "medium"
    assert risk_level(20) == "low"
    assert risk_level(19.99) == "very_low"


def test_failure_returns_default_assessment(monkeypatch) -> None:
    service = RiskAssessmentService()

    async def broken_events(user_id, hours=24):  # noqa: ARG001
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(service, "recent_events", broken_events)
    assessment = asyncio.run(service.calculate_user_risk("usr_sales"))

    assert assessment.overall_risk == "medium"
    assert assessment.risk_score == 50
    assert set(assessment.factors.values()) == {50}


def test_assessment_is_cached_and_persisted(seeded_db) -> None:
    service = RiskAssessmentService()
    events = [_event(index * 300, success=False) for index in range(4)]

    async def _run():
        first = await service.calculate_user_risk("usr_sales", events=events)
        second = await service.calculate_user_risk("usr_sales", events=[])
        history = await service.history("usr_sales")
        await service.invalidate("usr_sales")
        third = await service.calculate_user_risk("usr_sales", events=[])
        return first, second, history, third

    first, second, history, third = asyncio.run(_run())

    assert second is first
    assert first.factors["behavioral"] == 15
    assert len(history) == 1
    assert history[0]["user_id"] == "usr_sales"
    assert third is not first
    assert third.risk_score == 0


def test_recorded_events_feed_the_assessment(seeded_db) -> None:
    service = RiskAssessmentService()
    now = datetime.now(timezone.utc).replace(microsecond=0)

    async def _run():
        await service.record_event(_event(type="login", timestamp=now - timedelta(hours=1), location=NEW_YORK))
        await service.record_event(_event(type="login", timestamp=now - timedelta(minutes=30), location=LONDON))
        return await service.calculate_user_risk("usr_sales")

    assessment = asyncio.run(_run())

    # two countries (+15) and an impossible hop (+40)
    assert assessment.factors["geographical"] == 55


def test_event_timestamps_are_normalized_to_utc() -> None:
    base = {"type": "login", "user_id": "usr_sales", "ip_address": "10.0.0.1"}

    with_offset = SecurityEvent.from_dict({**base, "timestamp": "2026-03-04T13:00:00+01:00"})
    zulu = SecurityEvent.from_dict({**base, "timestamp": "2026-03-04T12:00:00Z"})
    naive = SecurityEvent.from_dict({**base, "timestamp": datetime(2026, 3, 4, 12, 0)})

    assert with_offset.timestamp == zulu.timestamp == naive.timestamp == MIDWEEK_NOON
    assert naive.timestamp.tzinfo is not None
    assert temporal_risk([with_offset, naive]) == temporal_risk([zulu, zulu])
