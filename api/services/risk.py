from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from api.services.config import get_settings
from api.services.database import (
    as_utc,
    connect_db,
    fetchall,
    insert_row,
    iso_z,
    parse_timestamp,
    rows_to_dicts,
    utc_datetime,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371
MAX_TRAVEL_SPEED_KMH = 1000
BURST_WINDOW_SECONDS = 60
RECENT_EVENTS_HOURS = 24
FACTOR_WEIGHTS = {
    "behavioral": 0.30,
    "transactional": 0.25,
    "geographical": 0.20,
    "device": 0.15,
    "temporal": 0.10,
}
SUSPICIOUS_AGENT_MARKERS = ("bot", "crawler", "automated")


@dataclass
class GeoLocation:
    country: str
    city: str
    latitude: float
    longitude: float


@dataclass
class SecurityEvent:
    type: str
    user_id: str
    ip_address: str
    timestamp: datetime
    success: bool = True
    user_agent: str = ""
    location: Optional[GeoLocation] = None
    device: Optional[dict[str, str]] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    flagged_as_anomaly: bool = False

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SecurityEvent":
        location = payload.get("location")
        timestamp = payload["timestamp"]
        return cls(
            type=payload["type"],
            user_id=payload["user_id"],
            ip_address=payload["ip_address"],
            timestamp=parse_timestamp(timestamp) if isinstance(timestamp, str) else as_utc(timestamp),
            success=bool(payload.get("success", True)),
            user_agent=payload.get("user_agent") or "",
            location=GeoLocation(**location) if location else None,
            device=payload.get("device"),
            metadata=dict(payload.get("metadata") or {}),
            flagged_as_anomaly=bool(payload.get("flagged_as_anomaly", False)),
        )


@dataclass
class BehaviorProfile:
    anomaly_count: int = 0
    high_risk_actions: int = 0
    suspicious_patterns: list[str] = field(default_factory=list)


@dataclass
class RiskAssessment:
    user_id: str
    overall_risk: str
    risk_score: int
    factors: dict[str, int]
    recommendations: list[str]
    timestamp: datetime
    valid_until: datetime

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = iso_z(self.timestamp)
        payload["valid_until"] = iso_z(self.valid_until)
        return payload


def haversine_km(a: GeoLocation, b: GeoLocation) -> float:
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.latitude)) * math.cos(math.radians(b.latitude)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_impossible_travel(first: SecurityEvent, second: SecurityEvent) -> bool:
    if first.location is None or second.location is None:
        return False
    distance = haversine_km(first.location, second.location)
    hours = abs((second.timestamp - first.timestamp).total_seconds()) / 3600
    if hours == 0:
        return distance > 0
    return distance / hours > MAX_TRAVEL_SPEED_KMH


def behavioral_risk(events: list[SecurityEvent], profile: Optional[BehaviorProfile] = None) -> float:
    score = 0.0
    if events:
        score += sum(1 for event in events if event.flagged_as_anomaly) / len(events) * 40
    if profile is not None:
        if profile.anomaly_count > 10:
            score += 20
        if profile.high_risk_actions > 5:
            score += 15
        if len(profile.suspicious_patterns) > 3:
            score += 10
    failed_logins = sum(1 for event in events if event.type == "login_attempt" and not event.success)
    if failed_logins > 3:
        score += 15
    return min(score, 100)


def geographical_risk(events: list[SecurityEvent]) -> float:
    located = [event for event in events if event.location is not None]
    countries = {event.location.country for event in located}
    places = {(event.location.city, event.location.country) for event in located}

    score = 0.0
    if len(countries) > 2:
        score += 30
    elif len(countries) > 1:
        score += 15
    if len(places) > 5:
        score += 20
    elif len(places) > 3:
        score += 10
    if any(is_impossible_travel(prev, curr) for prev, curr in zip(located, located[1:])):
        score += 40
    return min(score, 100)


def transactional_risk(events: list[SecurityEvent]) -> float:
    transactions = sorted((event for event in events if event.type == "transaction"), key=lambda e: e.timestamp)
    if not transactions:
        return 0.0

    score = 0.0
    if len(transactions) > 10:
        score += 25
    elif len(transactions) > 5:
        score += 15

    amounts = []
    for event in transactions:
        try:
            amount = float(event.metadata.get("amount", 0) or 0)
        except (TypeError, ValueError):
            continue
        if amount > 0:
            amounts.append(amount)
    if amounts:
        largest = max(amounts)
        if largest > 50000:
            score += 30
        elif largest > 20000:
            score += 20
        elif largest > 10000:
            score += 10
        if sum(amounts) / len(amounts) > 5000:
            score += 15

    failures = 0
    for event in transactions:
        if not event.success:
            failures += 1
            continue
        if failures >= 3:
            score += 20
        failures = 0
    return min(score, 100)


def temporal_risk(events: list[SecurityEvent]) -> float:
    score = 0.0
    night = sum(1 for event in events if 2 <= event.timestamp.hour <= 6)
    if night > 5:
        score += 20
    elif night > 2:
        score += 10

    weekend = sum(1 for event in events if event.timestamp.weekday() >= 5)
    if weekend > len(events) * 0.3:
        score += 15

    longest = 0
    current = 0
    previous: Optional[datetime] = None
    for event in sorted(events, key=lambda e: e.timestamp):
        if previous is not None and (event.timestamp - previous).total_seconds() < BURST_WINDOW_SECONDS:
            current += 1
        else:
            longest = max(longest, current)
            current = 1
        previous = event.timestamp
    longest = max(longest, current)

    if longest > 20:
        score += 25
    elif longest > 10:
        score += 15
    return min(score, 100)


def device_risk(events: list[SecurityEvent]) -> float:
    devices = {
        f"{event.device.get('browser_name')}-{event.device.get('operating_system')}"
        for event in events
        if event.device
    }
    addresses = {event.ip_address for event in events}

    score = 0.0
    if len(devices) > 5:
        score += 20
    elif len(devices) > 3:
        score += 10
    if len(addresses) > 10:
        score += 30
    elif len(addresses) > 5:
        score += 15
    if any(marker in event.user_agent.lower() for event in events for marker in SUSPICIOUS_AGENT_MARKERS):
        score += 25
    return min(score, 100)


def overall_score(factors: dict[str, float]) -> float:
    return sum(factors[name] * weight for name, weight in FACTOR_WEIGHTS.items())


def risk_level(score: float) -> str:
    if score >= 80:
        return "very_high"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    if score >= 20:
        return "low"
    return "very_low"


def recommendations_for(level: str, factors: dict[str, float]) -> list[str]:
    recommendations: list[str] = []
    if level in {"very_high", "high"}:
        recommendations += [
            "Implement enhanced authentication requirements",
            "Consider temporary account restrictions",
            "Require manual approval for high-value transactions",
        ]
    if factors["behavioral"] > 60:
        recommendations += ["Review and update user behavioral profile", "Increase monitoring frequency for this user"]
    if factors["geographical"] > 60:
        recommendations += ["Implement geofencing controls", "Require location verification for new regions"]
    if factors["transactional"] > 60:
        recommendations += ["Implement transaction velocity limits", "Require additional verification for large amounts"]
    if factors["device"] > 60:
        recommendations += ["Implement device registration requirements", "Consider blocking unrecognized devices"]
    if factors["temporal"] > 60:
        recommendations += ["Implement time-based access controls", "Alert on unusual time patterns"]
    if not recommendations:
        recommendations = ["Continue standard monitoring", "Maintain current security posture"]
    return recommendations


def assess(user_id: str, events: list[SecurityEvent], profile: Optional[BehaviorProfile] = None, *, validity: timedelta) -> RiskAssessment:
    factors = {
        "behavioral": behavioral_risk(events, profile),
        "geographical": geographical_risk(events),
        "transactional": transactional_risk(events),
        "temporal": temporal_risk(events),
        "device": device_risk(events),
    }
    score = overall_score(factors)
    level = risk_level(score)
    now = utc_datetime()
    return RiskAssessment(
        user_id=user_id,
        overall_risk=level,
        risk_score=round(score),
        factors={name: round(value) for name, value in factors.items()},
        recommendations=recommendations_for(level, factors),
        timestamp=now,
        valid_until=now + validity,
    )


class RiskAssessmentService:
    def __init__(self) -> None:
        self._cache: dict[str, RiskAssessment] = {}

    @property
    def validity(self) -> timedelta:
        return timedelta(hours=get_settings().risk_cache_hours)

    def default_assessment(self, user_id: str) -> RiskAssessment:
        now = utc_datetime()
        return RiskAssessment(
            user_id=user_id,
            overall_risk="medium",
            risk_score=50,
            factors={name: 50 for name in FACTOR_WEIGHTS},
            recommendations=["Unable to calculate risk - insufficient data"],
            timestamp=now,
            valid_until=now + self.validity,
        )

    async def record_event(self, event: SecurityEvent) -> int:
        conn = await connect_db()
        try:
            event_id = await insert_row(
                conn,
                "security_events",
                {
                    "user_id": event.user_id,
                    "type": event.type,
                    "success": event.success,
                    "ip_address": event.ip_address,
                    "user_agent": event.user_agent,
                    "location": asdict(event.location) if event.location else None,
                    "device": event.device,
                    "metadata": event.metadata,
                    "flagged_as_anomaly": event.flagged_as_anomaly,
                    "occurred_at": iso_z(event.timestamp),
                },
            )
            await conn.commit()
        finally:
            await conn.close()
        await self.invalidate(event.user_id)
        return event_id

    async def recent_events(self, user_id: str, hours: int = RECENT_EVENTS_HOURS) -> list[SecurityEvent]:
        cutoff = iso_z(utc_datetime() - timedelta(hours=hours))
        conn = await connect_db()
        try:
            rows = rows_to_dicts(
                await fetchall(
                    conn,
                    "SELECT * FROM security_events WHERE user_id = ? AND occurred_at >= ? ORDER BY occurred_at",
                    (user_id, cutoff),
                )
            )
        finally:
            await conn.close()
        return [SecurityEvent.from_dict({**row, "timestamp": row["occurred_at"]}) for row in rows]

    async def calculate_user_risk(
        self,
        user_id: str,
        events: Optional[list[SecurityEvent]] = None,
        profile: Optional[BehaviorProfile] = None,
    ) -> RiskAssessment:
        cached = self._cache.get(user_id)
        if cached is not None and cached.valid_until > utc_datetime():
            return cached

        try:
            if events is None:
                events = await self.recent_events(user_id)
            assessment = assess(user_id, events, profile, validity=self.validity)
            conn = await connect_db()
            try:
                await insert_row(
                    conn,
                    "risk_assessments",
                    {
                        "user_id": user_id,
                        "overall_risk": assessment.overall_risk,
                        "risk_score": assessment.risk_score,
                        "payload": assessment.to_dict(),
                        "assessed_at": assessment.to_dict()["timestamp"],
                    },
                )
                await conn.commit()
            finally:
                await conn.close()
        except Exception:
            logger.exception("Error calculating user risk for %s", user_id)
            return self.default_assessment(user_id)

        self._cache[user_id] = assessment
        logger.info("Risk assessment for %s: %s (%s)", user_id, assessment.overall_risk, assessment.risk_score)
        return assessment

    async def history(self, user_id: str, days: int = 30) -> list[dict[str, Any]]:
        cutoff = iso_z(utc_datetime() - timedelta(days=days))
        conn = await connect_db()
        try:
            rows = rows_to_dicts(
                await fetchall(
                    conn,
                    "SELECT payload FROM risk_assessments WHERE user_id = ? AND assessed_at >= ? ORDER BY id DESC",
                    (user_id, cutoff),
                )
            )
        finally:
            await conn.close()
        return [row["payload"] for row in rows]

    async def invalidate(self, user_id: str) -> None:
        self._cache.pop(user_id, None)
        logger.info("Invalidated risk profile for user %s", user_id)


risk_service = RiskAssessmentService()
