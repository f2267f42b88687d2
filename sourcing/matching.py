"""Match qualified startups to the user's VC connections."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from sourcing.models import Startup, VcConnection

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 60
RECENT_CONTACT_DAYS = 30

STAGE_POINTS = 40
SECTOR_POINTS = 20
RELATIONSHIP_POINTS = {"strong": 25, "moderate": 15, "weak": 5}
RECENT_CONTACT_POINTS = 10

# SIC division (first two digits) -> sector label
SIC_SECTORS = {
    "62": "software",
    "63": "data",
    "64": "fintech",
    "65": "insurtech",
    "66": "fintech",
    "72": "ai",
    "86": "healthtech",
    "85": "edtech",
    "68": "proptech",
    "35": "cleantech",
    "38": "cleantech",
    "47": "ecommerce",
    "49": "logistics",
    "52": "logistics",
}


@dataclass
class Match:
    vc_id: int
    name: str
    firm: str
    score: int
    reasons: list = field(default_factory=list)


def sectors_for_sic_codes(sic_codes: list[str]) -> list[str]:
    sectors = []
    for code in sic_codes or []:
        sector = SIC_SECTORS.get(code[:2])
        if sector and sector not in sectors:
            sectors.append(sector)
    return sectors


def _days_since(value: Optional[str], today: date) -> Optional[int]:
    if not value:
        return None
    try:
        return (today - datetime.fromisoformat(value[:10]).date()).days
    except ValueError:
        return None


def score_match(startup: Startup, vc: VcConnection, today: Optional[date] = None) -> Match:
    today = today or date.today()
    score = 0
    reasons = []

    stage = (startup.funding_stage or "pre-seed").lower()
    if stage in [s.lower() for s in vc.investment_stages]:
        score += STAGE_POINTS
        reasons.append(f"Invests at {stage}")

    vc_sectors = [s.lower() for s in vc.sectors]
    for sector in sectors_for_sic_codes(startup.sic_codes):
        if any(sector in vs or vs in sector for vs in vc_sectors):
            score += SECTOR_POINTS
            reasons.append(f"Sector: {sector}")
            break

    strength = (vc.relationship_strength or "weak").lower()
    score += RELATIONSHIP_POINTS.get(strength, RELATIONSHIP_POINTS["weak"])
    if strength in ("strong", "moderate"):
        reasons.append(f"{strength.capitalize()} relationship")

    days = _days_since(vc.last_contact_date, today)
    if days is not None and days < RECENT_CONTACT_DAYS:
        score += RECENT_CONTACT_POINTS
        reasons.append("Recent contact")

    return Match(vc_id=vc.id, name=vc.name, firm=vc.firm, score=score, reasons=reasons)


def find_matches(
    startup: Startup,
    connections: list[VcConnection],
    threshold: int = MATCH_THRESHOLD,
    today: Optional[date] = None,
) -> list[Match]:
    """Connections scoring at least ``threshold``, best first."""
    matches = [score_match(startup, vc, today) for vc in connections]
    matches = [m for m in matches if m.score >= threshold]
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches
