"""
Lead scoring and VIP detection.

Pure functions over a visitor's behavioural signals:

- ``apply_event`` folds one tracked browser event into the signals
- ``calculate_lead_score`` turns signals into a weighted total and a tier
- ``detect_vip`` thresholds the total into a VIP alert type

Persistence, alerts and notifications live in ``lead_service``.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from aurelia.core.config import settings

SCORING_RULES: dict[str, int] = {
    # Page visits
    "pricing_page": 15,
    "services_page": 10,
    "contact_page": 10,
    "trial_page": 20,
    # Engagement
    "services_viewed_3plus": 10,
    "time_on_site_2min": 5,
    "time_on_site_5min": 10,
    "time_on_site_10min": 15,
    "scroll_depth_50": 3,
    "scroll_depth_75": 5,
    "scroll_depth_90": 8,
    # Return behaviour
    "return_visitor": 20,
    "multiple_sessions": 15,
    # UTM quality
    "utm_linkedin": 25,
    "utm_google_paid": 20,
    "utm_referral": 15,
    "utm_email": 10,
    # Actions
    "form_interaction": 5,
    "trial_started": 30,
}

FORM_INTERACTION_CAP = 25

TIER_THRESHOLDS: tuple[tuple[int, str], ...] = ((80, "qualified"), (50, "hot"), (25, "warm"))

ALERT_ULTRA = "ultra_high_intent"
ALERT_HIGH = "high_intent"
ALERT_QUALIFIED = "qualified_lead"

EVENT_TYPES = (
    "page_view",
    "scroll",
    "time_on_site",
    "form_interaction",
    "service_view",
    "utm",
    "trial_started",
    "referral",
)


@dataclass
class LeadSignals:
    pages_visited: list[str] = field(default_factory=list)
    time_on_site: int = 0  # seconds
    scroll_depth: int = 0  # 0-100
    return_visits: int = 0
    utm_source: str | None = None
    utm_medium: str | None = None
    form_interactions: int = 0
    pricing_page_views: int = 0
    services_viewed: int = 0
    trial_started: bool = False
    referral_source: str | None = None
    last_visit_at: float | None = None  # epoch seconds of the previous page view

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LeadSignals":
        if not data:
            return cls()
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LeadScoreResult:
    total: int
    breakdown: dict[str, int]
    tier: str


@dataclass(frozen=True)
class VIPDetection:
    is_vip: bool
    score: LeadScoreResult
    alert_type: str | None
    should_notify_admin: bool
    should_engage_concierge: bool


def merge_signals(current: LeadSignals, updates: dict[str, Any]) -> LeadSignals:
    """
    Overlay ``updates`` on ``current``. Later values win, except
    ``pages_visited`` which is merged as an ordered set union.
    """
    merged = current.to_dict()
    for key, value in updates.items():
        if key not in merged:
            continue
        if key == "pages_visited":
            pages = list(merged["pages_visited"])
            for page in value or []:
                if page not in pages:
                    pages.append(page)
            merged["pages_visited"] = pages
        else:
            merged[key] = value
    return LeadSignals.from_dict(merged)


def _payload_int(payload: dict[str, Any], key: str) -> int:
    try:
        return int(payload.get(key) or 0)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"Invalid {key} for lead event: {payload.get(key)!r}") from None


def _payload_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"Invalid {key} for lead event: {value!r}")


def apply_event(
    signals: LeadSignals,
    event_type: str,
    payload: dict[str, Any] | None = None,
    now: float | None = None,
) -> LeadSignals:
    """
    Fold one tracked event into the signals.

    Raises:
        ValueError: Unknown event type or a malformed payload value.
    """
    payload = payload or {}

    if event_type == "page_view":
        path = str(payload.get("path") or "/")
        updates: dict[str, Any] = {"pages_visited": [path]}
        if path in ("/pricing", "/membership"):
            updates["pricing_page_views"] = signals.pricing_page_views + 1
        if now is not None:
            gap = settings.LEAD_RETURN_VISIT_GAP_SECONDS
            if signals.last_visit_at is not None and now - signals.last_visit_at > gap:
                updates["return_visits"] = signals.return_visits + 1
            updates["last_visit_at"] = now
        return merge_signals(signals, updates)

    if event_type == "scroll":
        depth = max(0, min(100, _payload_int(payload, "depth")))
        if depth > signals.scroll_depth:
            return merge_signals(signals, {"scroll_depth": depth})
        return signals

    if event_type == "time_on_site":
        seconds = max(0, _payload_int(payload, "seconds"))
        return merge_signals(signals, {"time_on_site": signals.time_on_site + seconds})

    if event_type == "form_interaction":
        return merge_signals(signals, {"form_interactions": signals.form_interactions + 1})

    if event_type == "service_view":
        return merge_signals(signals, {"services_viewed": signals.services_viewed + 1})

    if event_type == "utm":
        source, medium = _payload_str(payload, "source"), _payload_str(payload, "medium")
        if source or medium:
            return merge_signals(signals, {"utm_source": source, "utm_medium": medium})
        return signals

    if event_type == "trial_started":
        return merge_signals(signals, {"trial_started": True})

    if event_type == "referral":
        return merge_signals(signals, {"referral_source": _payload_str(payload, "source")})

    raise ValueError(f"Unknown lead event type: {event_type}")


def _tier_for(total: int) -> str:
    for threshold, tier in TIER_THRESHOLDS:
        if total >= threshold:
            return tier
    return "cold"


def calculate_lead_score(signals: LeadSignals) -> LeadScoreResult:
    breakdown: dict[str, int] = {}
    pages = set(signals.pages_visited)

    if pages & {"/pricing", "/membership"}:
        breakdown["pricing_page"] = SCORING_RULES["pricing_page"]
    if "/services" in pages:
        breakdown["services_page"] = SCORING_RULES["services_page"]
    if "/contact" in pages:
        breakdown["contact_page"] = SCORING_RULES["contact_page"]
    if pages & {"/trial", "/apply"}:
        breakdown["trial_page"] = SCORING_RULES["trial_page"]

    if signals.services_viewed >= 3:
        breakdown["services_viewed"] = SCORING_RULES["services_viewed_3plus"]

    if signals.time_on_site >= 600:
        breakdown["time_engagement"] = SCORING_RULES["time_on_site_10min"]
    elif signals.time_on_site >= 300:
        breakdown["time_engagement"] = SCORING_RULES["time_on_site_5min"]
    elif signals.time_on_site >= 120:
        breakdown["time_engagement"] = SCORING_RULES["time_on_site_2min"]

    if signals.scroll_depth >= 90:
        breakdown["scroll_depth"] = SCORING_RULES["scroll_depth_90"]
    elif signals.scroll_depth >= 75:
        breakdown["scroll_depth"] = SCORING_RULES["scroll_depth_75"]
    elif signals.scroll_depth >= 50:
        breakdown["scroll_depth"] = SCORING_RULES["scroll_depth_50"]

    if signals.return_visits > 0:
        breakdown["return_visitor"] = SCORING_RULES["return_visitor"]
    if signals.return_visits >= 3:
        breakdown["multiple_sessions"] = SCORING_RULES["multiple_sessions"]

    source = (signals.utm_source or "").lower()
    medium = (signals.utm_medium or "").lower()
    if source == "linkedin":
        breakdown["utm_quality"] = SCORING_RULES["utm_linkedin"]
    elif source == "google" and medium == "cpc":
        breakdown["utm_quality"] = SCORING_RULES["utm_google_paid"]
    elif medium == "referral":
        breakdown["utm_quality"] = SCORING_RULES["utm_referral"]
    elif medium == "email":
        breakdown["utm_quality"] = SCORING_RULES["utm_email"]

    if signals.form_interactions > 0:
        breakdown["form_interaction"] = min(
            signals.form_interactions * SCORING_RULES["form_interaction"], FORM_INTERACTION_CAP
        )

    if signals.trial_started:
        breakdown["trial_started"] = SCORING_RULES["trial_started"]

    total = sum(breakdown.values())
    return LeadScoreResult(total=total, breakdown=breakdown, tier=_tier_for(total))


def detect_vip(score: LeadScoreResult) -> VIPDetection:
    total = score.total
    alert_type: str | None = None
    if total >= settings.VIP_ULTRA_THRESHOLD:
        alert_type = ALERT_ULTRA
    elif total >= settings.VIP_HOT_THRESHOLD:
        alert_type = ALERT_HIGH
    elif total >= settings.VIP_QUALIFIED_THRESHOLD:
        alert_type = ALERT_QUALIFIED

    is_vip = total >= settings.VIP_QUALIFIED_THRESHOLD
    return VIPDetection(
        is_vip=is_vip,
        score=score,
        alert_type=alert_type,
        should_notify_admin=is_vip and alert_type == ALERT_ULTRA,
        should_engage_concierge=is_vip,
    )
