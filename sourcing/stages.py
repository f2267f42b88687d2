"""
Startup stage machine.

Stages run discovered -> researching -> qualified -> contacted -> meeting ->
introduced, with ``passed`` as the terminal reject. ``set_stage`` lets a user
move a startup anywhere; the automated moves are gated:

- qualify_startup only moves startups still in discovered/researching
- mark_contacted only moves startups that are exactly 'qualified'
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from sourcing import config, scoring
from sourcing.db import transaction, utc_now_iso, _connect

logger = logging.getLogger(__name__)

STAGES = ["discovered", "researching", "qualified", "contacted", "meeting", "introduced", "passed"]
PRE_QUALIFICATION_STAGES = ("discovered", "researching")

STEALTH_BONUS = 10
RECENTLY_ANNOUNCED_BONUS = 5
MULTIPLE_FOUNDERS_BONUS = 5
STRONG_FOUNDER_THRESHOLD = 60

TIER_THRESHOLDS = [(80, "A"), (65, "B"), (50, "C")]


@dataclass
class QualificationResult:
    startup_id: int
    status: str                      # qualified, watchlist, passed, needs_research
    tier: Optional[str] = None
    overall_score: Optional[int] = None
    team_score: Optional[int] = None
    market_score: Optional[int] = None
    bonus_score: Optional[int] = None
    stage: str = ""
    moved: bool = False
    reasoning: list = field(default_factory=list)


def tier_for_score(score: Optional[int]) -> str:
    """Read-side projection of an overall score onto A-D."""
    if score is None:
        return "D"
    for threshold, tier in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return "D"


def _status_for_tier(tier: str) -> str:
    if tier in ("A", "B"):
        return "qualified"
    if tier == "C":
        return "watchlist"
    return "passed"


def set_stage(startup_id: int, stage: str, user_id: Optional[str] = None) -> str:
    """
    Move a startup to any known stage. Returns the previous stage.

    With ``user_id`` only that user's startup is touched; another user's id
    is reported as not found.
    """
    if stage not in STAGES:
        raise ValueError(f"Unknown stage: {stage!r}")
    with transaction() as conn:
        if user_id is None:
            row = conn.execute("SELECT stage FROM startups WHERE id = ?", (startup_id,)).fetchone()
        else:
            row = conn.execute(
                "SELECT stage FROM startups WHERE id = ? AND user_id = ?", (startup_id, user_id)
            ).fetchone()
        if row is None:
            raise LookupError(f"Startup {startup_id} not found")
        conn.execute("UPDATE startups SET stage = ? WHERE id = ?", (stage, startup_id))
    logger.info("Startup %d: %s -> %s", startup_id, row["stage"], stage)
    return row["stage"]


def qualify_startup(startup_id: int) -> QualificationResult:
    """
    Score a startup and, if it is still pre-qualification, move it.

    overall = min(100, round(0.5 * team + 0.4 * market + bonus))

    Tier A/B -> qualified, C -> qualified (watchlist), D -> passed. Without a
    team score (no founder scored yet) the result is needs_research and
    nothing is written. Startups already past researching keep their stage;
    their scores are refreshed.
    """
    with transaction() as conn:
        startup = conn.execute(
            "SELECT id, stage, sic_codes_json, is_stealth_mode, recently_announced "
            "FROM startups WHERE id = ?",
            (startup_id,),
        ).fetchone()
        if startup is None:
            raise LookupError(f"Startup {startup_id} not found")

        founder_rows = conn.execute(
            "SELECT overall_score FROM founders WHERE startup_id = ? AND is_founder = 1",
            (startup_id,),
        ).fetchall()
        founder_scores = [r["overall_score"] for r in founder_rows if r["overall_score"] is not None]

        team = scoring.team_score(founder_scores)
        result = QualificationResult(startup_id=startup_id, status="needs_research",
                                     stage=startup["stage"])
        if team is None:
            result.reasoning.append("No founders scored yet")
            return result

        market = scoring.market_score(json.loads(startup["sic_codes_json"] or "[]"))

        bonus = 0
        if startup["is_stealth_mode"]:
            bonus += STEALTH_BONUS
            result.reasoning.append(f"Stealth mode: +{STEALTH_BONUS}")
        if startup["recently_announced"]:
            bonus += RECENTLY_ANNOUNCED_BONUS
            result.reasoning.append(f"Recently announced: +{RECENTLY_ANNOUNCED_BONUS}")
        if len(founder_scores) >= 2 and all(s >= STRONG_FOUNDER_THRESHOLD for s in founder_scores):
            bonus += MULTIPLE_FOUNDERS_BONUS
            result.reasoning.append(f"Multiple strong founders: +{MULTIPLE_FOUNDERS_BONUS}")

        overall = min(100, round(0.5 * team + 0.4 * market + bonus))
        tier = tier_for_score(overall)

        result.status = _status_for_tier(tier)
        result.tier = tier
        result.overall_score = overall
        result.team_score = team
        result.market_score = market
        result.bonus_score = bonus
        result.reasoning.insert(0, f"Team {team}, market {market}")

        changes = {
            "overall_score": overall,
            "team_score": team,
            "market_score": market,
            "bonus_score": bonus,
        }
        if startup["stage"] in PRE_QUALIFICATION_STAGES:
            changes["stage"] = "passed" if result.status == "passed" else "qualified"
            changes["qualified_at"] = utc_now_iso()
            result.stage = changes["stage"]
            result.moved = True

        assignments = ", ".join(f"{column} = ?" for column in changes)
        conn.execute(
            f"UPDATE startups SET {assignments} WHERE id = ?",
            list(changes.values()) + [startup_id],
        )

    if result.moved:
        logger.info("Startup %d scored %d (tier %s) -> %s",
                    startup_id, overall, tier, result.stage)
    return result


def mark_contacted(startup_id: int) -> bool:
    """qualified -> contacted. Returns False if the startup was not exactly 'qualified'."""
    conn = _connect()
    try:
        cursor = conn.execute(
            "UPDATE startups SET stage = 'contacted' WHERE id = ? AND stage = 'qualified'",
            (startup_id,),
        )
        conn.commit()
        moved = cursor.rowcount == 1
    finally:
        conn.close()
    if moved:
        logger.info("Startup %d: qualified -> contacted", startup_id)
    return moved


def qualify_pending(user_id: str, limit: Optional[int] = None, exclude: Optional[set] = None) -> dict:
    """
    Qualify discovered/researching startups, one failure never stopping the rest.

    Only startups with at least one scored founder are picked up, so a pile
    of startups still waiting on research never fills the batch. Those are
    counted under needs_research without being processed.

    ``exclude`` holds startup ids to leave alone this time (e.g. enrichment
    was skipped for them).
    """
    limit = config.QUALIFICATION_BATCH_SIZE if limit is None else limit
    excluded = sorted(exclude or ())
    not_excluded = ""
    if excluded:
        not_excluded = f" AND s.id NOT IN ({', '.join('?' for _ in excluded)})"

    conn = _connect()
    try:
        rows = conn.execute(
            f"""
            SELECT s.id FROM startups s
            WHERE s.user_id = ? AND s.stage IN (?, ?){not_excluded}
              AND EXISTS (
                  SELECT 1 FROM founders f
                  WHERE f.startup_id = s.id AND f.is_founder = 1 AND f.overall_score IS NOT NULL
              )
            ORDER BY s.id LIMIT ?
            """,
            (user_id, *PRE_QUALIFICATION_STAGES, *excluded, limit),
        ).fetchall()
        waiting = conn.execute(
            f"""
            SELECT COUNT(*) FROM startups s
            WHERE s.user_id = ? AND s.stage IN (?, ?){not_excluded}
              AND NOT EXISTS (
                  SELECT 1 FROM founders f
                  WHERE f.startup_id = s.id AND f.is_founder = 1 AND f.overall_score IS NOT NULL
              )
            """,
            (user_id, *PRE_QUALIFICATION_STAGES, *excluded),
        ).fetchone()[0]
    finally:
        conn.close()

    counts = {
        "processed": 0,
        "qualified": 0,
        "watchlist": 0,
        "passed": 0,
        "needs_research": waiting,
        "errors": 0,
    }
    for row in rows:
        try:
            result = qualify_startup(row["id"])
        except Exception as exc:
            logger.error("Qualification failed for startup %d: %s", row["id"], exc)
            counts["errors"] += 1
            continue
        counts["processed"] += 1
        counts[result.status] += 1
    return counts


def get_pipeline_stats(user_id: str) -> dict:
    """
    Funnel counts for a user.

    Full scan over the user's startups on every call; the numbers are never
    cached, so they always reflect the current rows.
    """
    stats = {
        "total": 0,
        "by_stage": {stage: 0 for stage in STAGES},
        "stealth": 0,
        "recently_announced": 0,
        "average_score": None,
    }
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT stage, is_stealth_mode, recently_announced, overall_score "
            "FROM startups WHERE user_id = ?",
            (user_id,),
        ).fetchall()
    finally:
        conn.close()

    scores = []
    for row in rows:
        stats["total"] += 1
        stats["by_stage"][row["stage"]] = stats["by_stage"].get(row["stage"], 0) + 1
        if row["is_stealth_mode"]:
            stats["stealth"] += 1
        if row["recently_announced"]:
            stats["recently_announced"] += 1
        if row["overall_score"] is not None:
            scores.append(row["overall_score"])

    if scores:
        stats["average_score"] = round(sum(scores) / len(scores))
    return stats
