"""
Entity and value types shared across the sourcing pipeline.

Rows from the store map 1:1 onto the Startup / Founder dataclasses
(``Startup(**dict(row))``). List-valued columns are stored as JSON text in
``*_json`` columns and exposed through properties.

Partial updates go through StartupPatch / FounderPatch: every field defaults
to the UNSET sentinel and only fields that were set are written. Setting a
field to None clears the column.
"""

import json
from dataclasses import dataclass, field, fields
from typing import Any, Optional


class _Unset:
    """Marker for 'field not present' in a partial update."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------

@dataclass
class Startup:
    id: Optional[int] = None
    user_id: str = ""
    company_number: str = ""
    company_name: str = ""
    incorporation_date: str = ""
    company_status: str = ""
    company_type: str = ""
    registered_address: str = ""
    sic_codes_json: str = "[]"
    source: str = ""
    discovered_at: Optional[str] = None
    stage: str = "discovered"
    notes: str = ""

    # Signals
    is_stealth_mode: int = 0
    recently_announced: int = 0
    funding_stage: Optional[str] = None
    estimated_funding: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    team_size: Optional[str] = None
    tech_stack_json: str = "[]"
    news_json: str = "[]"
    funding_rounds_json: str = "[]"

    # Scores (0-100, None until computed)
    overall_score: Optional[int] = None
    team_score: Optional[int] = None
    market_score: Optional[int] = None
    bonus_score: Optional[int] = None
    traction_score: Optional[int] = None

    enriched_at: Optional[str] = None
    enrich_attempted_at: Optional[str] = None
    qualified_at: Optional[str] = None

    @property
    def sic_codes(self) -> list[str]:
        return json.loads(self.sic_codes_json) if self.sic_codes_json else []

    @property
    def tech_stack(self) -> list[str]:
        return json.loads(self.tech_stack_json) if self.tech_stack_json else []

    @property
    def news_articles(self) -> list[str]:
        return json.loads(self.news_json) if self.news_json else []

    @property
    def funding_rounds(self) -> list[str]:
        return json.loads(self.funding_rounds_json) if self.funding_rounds_json else []


@dataclass
class Founder:
    id: Optional[int] = None
    user_id: str = ""
    startup_id: Optional[int] = None
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    role: str = ""
    is_founder: int = 0
    appointed_on: Optional[str] = None
    nationality: Optional[str] = None
    occupation: Optional[str] = None

    # Enrichment
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    headline: Optional[str] = None
    location: Optional[str] = None
    education_json: str = "[]"
    experience_json: str = "[]"
    years_of_experience: Optional[int] = None
    is_repeat_founder: int = 0
    is_technical_founder: int = 0
    previous_exits: int = 0
    has_phd: int = 0
    has_mba: int = 0

    # Scores
    education_score: Optional[int] = None
    experience_score: Optional[int] = None
    overall_score: Optional[int] = None
    founder_tier: Optional[str] = None

    source: str = ""
    discovered_at: Optional[str] = None
    enriched_at: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def education(self) -> list[dict]:
        return json.loads(self.education_json) if self.education_json else []

    @property
    def experience(self) -> list[dict]:
        return json.loads(self.experience_json) if self.experience_json else []


@dataclass
class Template:
    id: Optional[int] = None
    user_id: str = ""
    name: str = ""
    type: str = "email"  # email, linkedin
    subject: Optional[str] = None
    body: str = ""
    is_default: int = 0
    created_at: Optional[str] = None


@dataclass
class VcConnection:
    id: Optional[int] = None
    user_id: str = ""
    name: str = ""
    firm: str = ""
    investment_stages_json: str = "[]"
    sectors_json: str = "[]"
    relationship_strength: str = "weak"  # strong, moderate, weak
    last_contact_date: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def investment_stages(self) -> list[str]:
        return json.loads(self.investment_stages_json) if self.investment_stages_json else []

    @property
    def sectors(self) -> list[str]:
        return json.loads(self.sectors_json) if self.sectors_json else []


@dataclass
class JobRun:
    id: Optional[int] = None
    user_id: str = ""
    job_type: str = ""
    status: str = "running"  # running, completed, failed
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Enrichment inputs (what collaborators hand to the scoring module)
# ---------------------------------------------------------------------------

@dataclass
class FounderProfile:
    """Structured founder attributes returned by enrichment."""
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    email: Optional[str] = None
    headline: Optional[str] = None
    location: Optional[str] = None
    education: list = field(default_factory=list)    # [{school, degree?, is_top_tier?}]
    experience: list = field(default_factory=list)   # [{company, title, is_high_growth?}]
    years_of_experience: int = 0
    is_repeat_founder: bool = False
    is_technical_founder: bool = False
    previous_exits: int = 0
    has_phd: bool = False
    has_mba: bool = False
    is_stealth_mode: bool = False
    is_recently_announced: bool = False


@dataclass
class CompanySignals:
    """Company-level signals used for traction scoring."""
    website: Optional[str] = None
    description: Optional[str] = None
    news_articles: list = field(default_factory=list)
    funding_rounds: list = field(default_factory=list)
    funding_stage: Optional[str] = None
    estimated_funding: Optional[str] = None
    team_size: Optional[str] = None
    tech_stack: list = field(default_factory=list)
    has_live_product: bool = False


@dataclass
class FounderScores:
    education_score: int
    experience_score: int
    overall_score: int
    founder_tier: str


# ---------------------------------------------------------------------------
# Partial updates
# ---------------------------------------------------------------------------

_STARTUP_JSON_COLUMNS = {
    'sic_codes': 'sic_codes_json',
    'tech_stack': 'tech_stack_json',
    'news_articles': 'news_json',
    'funding_rounds': 'funding_rounds_json',
}

_FOUNDER_JSON_COLUMNS = {
    'education': 'education_json',
    'experience': 'experience_json',
}


def _collect_changes(patch, json_columns: dict) -> dict:
    changes = {}
    for f in fields(patch):
        value = getattr(patch, f.name)
        if value is UNSET:
            continue
        column = json_columns.get(f.name)
        if column:
            changes[column] = json.dumps(value) if value is not None else None
        elif isinstance(value, bool):
            changes[f.name] = int(value)
        else:
            changes[f.name] = value
    return changes


@dataclass
class StartupPatch:
    stage: Any = UNSET
    notes: Any = UNSET
    is_stealth_mode: Any = UNSET
    recently_announced: Any = UNSET
    funding_stage: Any = UNSET
    estimated_funding: Any = UNSET
    website: Any = UNSET
    description: Any = UNSET
    team_size: Any = UNSET
    tech_stack: Any = UNSET
    news_articles: Any = UNSET
    funding_rounds: Any = UNSET
    overall_score: Any = UNSET
    team_score: Any = UNSET
    market_score: Any = UNSET
    bonus_score: Any = UNSET
    traction_score: Any = UNSET
    enriched_at: Any = UNSET
    enrich_attempted_at: Any = UNSET
    qualified_at: Any = UNSET

    def changes(self) -> dict:
        """Column -> value for every field that was set."""
        return _collect_changes(self, _STARTUP_JSON_COLUMNS)


@dataclass
class FounderPatch:
    email: Any = UNSET
    linkedin_url: Any = UNSET
    github_url: Any = UNSET
    headline: Any = UNSET
    location: Any = UNSET
    education: Any = UNSET
    experience: Any = UNSET
    years_of_experience: Any = UNSET
    is_repeat_founder: Any = UNSET
    is_technical_founder: Any = UNSET
    previous_exits: Any = UNSET
    has_phd: Any = UNSET
    has_mba: Any = UNSET
    education_score: Any = UNSET
    experience_score: Any = UNSET
    overall_score: Any = UNSET
    founder_tier: Any = UNSET
    enriched_at: Any = UNSET

    def changes(self) -> dict:
        return _collect_changes(self, _FOUNDER_JSON_COLUMNS)
