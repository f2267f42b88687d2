"""
Score founders and startups for sourcing qualification.

All functions here are pure and deterministic: integer scores clamped to
0-100, no I/O. Persisting the results is the caller's job.

Founder scoring:
  education   top-tier schools, PhD / MBA
  experience  roles at known high-growth companies, years, technical founder
  overall     0.4 * education + 0.6 * experience, plus repeat-founder and exit bonuses

Startup scoring:
  team        mean of the founders' overall scores
  market      attractiveness of the registered SIC codes
  traction    public signals (website, press, funding, team size, tech footprint)
"""

import logging
import re
from datetime import date, datetime
from typing import Iterable, Optional

from sourcing.models import CompanySignals, FounderProfile, FounderScores

logger = logging.getLogger(__name__)

TOP_TIER_UNIVERSITIES = [
    "oxford", "cambridge", "imperial", "ucl", "lse", "stanford", "mit", "harvard",
    "yale", "princeton", "berkeley", "carnegie mellon", "eth zurich", "caltech",
]

HIGH_GROWTH_COMPANIES = [
    "google", "meta", "facebook", "amazon", "apple", "microsoft", "netflix",
    "stripe", "revolut", "monzo", "wise", "deliveroo", "uber", "airbnb",
    "spotify", "klarna", "openai", "anthropic", "deepmind", "figma", "notion",
]

# Market attractiveness per SIC code
SIC_SCORES = {
    # AI & deep tech
    "62011": 95,
    "72190": 90,
    "72200": 90,
    # Software / SaaS
    "62012": 85,
    "62020": 75,
    "62030": 80,
    "62090": 70,
    # Data & cloud
    "63110": 85,
    "63120": 80,
    # Fintech
    "64209": 90,
    "64303": 85,
    "64921": 80,
    "64999": 75,
    "66110": 75,
    # Healthtech
    "86210": 80,
    "86220": 80,
    # Edtech
    "85421": 75,
    "85590": 70,
    # E-commerce
    "47910": 65,
    # Cleantech
    "35110": 80,
    "35120": 75,
}
NO_SIC_MARKET_SCORE = 50
NON_TECH_MARKET_SCORE = 40

FUNDING_STAGES = ["pre-seed", "seed", "series-a", "series-b", "series-c", "series-d"]
_FUNDING_STAGE_PATTERN = re.compile(r"\b(pre-?seed|seed|series-?[a-d])\b")

FOUNDER_TIERS = [
    (80, "exceptional"),
    (65, "strong"),
    (50, "promising"),
]

STEALTH_WINDOW_DAYS = 90
RECENTLY_ANNOUNCED_WINDOW_DAYS = 180


def _clamp(score: float) -> int:
    return max(0, min(100, int(score)))


def is_top_tier_school(school: str) -> bool:
    name = (school or "").lower()
    return any(u in name for u in TOP_TIER_UNIVERSITIES)


def is_high_growth_company(company: str) -> bool:
    name = (company or "").lower()
    return any(c in name for c in HIGH_GROWTH_COMPANIES)


# ---------------------------------------------------------------------------
# Founder
# ---------------------------------------------------------------------------

def education_score(education: list[dict], has_phd: bool = False, has_mba: bool = False) -> int:
    """
    Score a founder's education.

    Each entry is a dict with a ``school`` and an optional ``is_top_tier``
    flag; when the flag is absent the school name is matched against
    TOP_TIER_UNIVERSITIES.
    """
    top_tier = 0
    for entry in education or []:
        flag = entry.get("is_top_tier")
        if flag is None:
            flag = is_top_tier_school(entry.get("school", ""))
        if flag:
            top_tier += 1

    if top_tier:
        score = min(100, 50 + 25 * top_tier)
    elif education:
        score = 30
    else:
        score = 0

    if has_phd:
        score += 10
    if has_mba:
        score += 5
    return _clamp(score)


def experience_score(
    experience: list[dict],
    years_of_experience: int = 0,
    is_technical_founder: bool = False,
) -> int:
    """Score a founder's work history. Entries: ``{company, title, is_high_growth?}``."""
    high_growth = 0
    for entry in experience or []:
        flag = entry.get("is_high_growth")
        if flag is None:
            flag = is_high_growth_company(entry.get("company", ""))
        if flag:
            high_growth += 1

    if high_growth >= 3:
        score = 70
    elif high_growth == 2:
        score = 55
    elif high_growth == 1:
        score = 40
    elif experience:
        score = 20
    else:
        score = 0

    score += min(20, 2 * max(0, years_of_experience or 0))
    if is_technical_founder:
        score += 10
    return _clamp(score)


def founder_overall_score(
    education: int,
    experience: int,
    is_repeat_founder: bool = False,
    previous_exits: int = 0,
) -> int:
    score = round(0.4 * education + 0.6 * experience)
    if is_repeat_founder:
        score += 10
    score += min(10, 5 * max(0, previous_exits or 0))
    return _clamp(score)


def founder_tier(overall: int) -> str:
    for threshold, tier in FOUNDER_TIERS:
        if overall >= threshold:
            return tier
    return "standard"


def score_founder(profile: FounderProfile) -> FounderScores:
    edu = education_score(profile.education, profile.has_phd, profile.has_mba)
    exp = experience_score(
        profile.experience, profile.years_of_experience, profile.is_technical_founder
    )
    overall = founder_overall_score(
        edu, exp, profile.is_repeat_founder, profile.previous_exits
    )
    return FounderScores(
        education_score=edu,
        experience_score=exp,
        overall_score=overall,
        founder_tier=founder_tier(overall),
    )


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

def _team_size_points(team_size: Optional[str]) -> int:
    if not team_size:
        return 0
    bracket = team_size.replace(" ", "")
    if bracket == "1-10":
        return 5
    if bracket == "11-50":
        return 15
    return 20


def traction_score(signals: CompanySignals) -> int:
    """
    Traction from public company signals:

      website                 +15
      press coverage          +10 (1-2 articles) / +20 (3+)
      funding stage known     +10
      confirmed funding round +25
      team size               +5 (1-10) / +15 (11-50) / +20 (larger)
      technology footprint    +10
      live product            +10
    """
    score = 0
    if signals.website:
        score += 15

    articles = len(signals.news_articles or [])
    if articles >= 3:
        score += 20
    elif articles >= 1:
        score += 10

    if signals.funding_stage:
        score += 10
    if signals.funding_rounds:
        score += 25

    score += _team_size_points(signals.team_size)

    if signals.tech_stack:
        score += 10
    if signals.has_live_product:
        score += 10
    return _clamp(score)


def team_score(founder_scores: Iterable[Optional[int]]) -> Optional[int]:
    """Rounded mean of the scored founders, or None when nobody is scored yet."""
    scored = [s for s in founder_scores if s is not None]
    if not scored:
        return None
    return round(sum(scored) / len(scored))


def market_score(sic_codes: Optional[list[str]]) -> int:
    if not sic_codes:
        return NO_SIC_MARKET_SCORE
    best = max((SIC_SCORES.get(code, 0) for code in sic_codes), default=0)
    return best if best else NON_TECH_MARKET_SCORE


def infer_funding_stage(labels: Iterable[str]) -> Optional[str]:
    """
    Most advanced funding stage mentioned in ``labels``.

    >>> infer_funding_stage(["Seed round", "Series A led by Foo"])
    'series-a'
    """
    best = -1
    for label in labels or []:
        text = re.sub(r"[\s_]+", "-", (label or "").lower())
        for match in _FUNDING_STAGE_PATTERN.findall(text):
            if match.startswith("pre"):
                stage = "pre-seed"
            elif match.startswith("series"):
                stage = "series-" + match[-1]
            else:
                stage = "seed"
            best = max(best, FUNDING_STAGES.index(stage))
    return FUNDING_STAGES[best] if best >= 0 else None


def incorporation_flags(incorporation_date: str, today: Optional[date] = None) -> tuple[bool, bool]:
    """
    (is_stealth_mode, recently_announced) from the company's age.

    Stealth: incorporated less than 90 days ago. Recently announced: 90-180 days.
    Unparseable dates give (False, False).
    """
    today = today or date.today()
    try:
        created = datetime.strptime(incorporation_date, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return False, False
    age_days = (today - created).days
    if age_days < STEALTH_WINDOW_DAYS:
        return True, False
    if age_days <= RECENTLY_ANNOUNCED_WINDOW_DAYS:
        return False, True
    return False, False
