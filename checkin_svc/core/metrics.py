from __future__ import annotations
from prometheus_client import Counter

# exposed on /metrics next to the instrumentator's HTTP metrics
CHECKIN_OUTCOMES = Counter(
    "checkin_outcomes_total",
    "Check-in attempts by outcome (admitted, duplicate or an error kind)",
    ["outcome"],
)
BADGE_FAILURES = Counter(
    "checkin_badge_failures_total",
    "Badge evaluation handoffs that failed or were dropped",
    ["reason"],
)
