"""
SQLite entity store for the sourcing pipeline.

Tables:
- startups: companies found in the registry, keyed per user by company number
- founders: officers of those companies, with enrichment and scores
- templates: outreach message templates
- vc_connections: investors a startup can be introduced to
- job_runs: one row per pipeline run, used to keep runs from overlapping

Every call opens its own connection. Multi-statement writes go through
``transaction()``, which takes the write lock up front (BEGIN IMMEDIATE)
so a concurrent writer waits instead of interleaving.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sourcing import config
from sourcing.companies_house import split_officer_name
from sourcing.models import (
    Founder,
    FounderPatch,
    JobRun,
    Startup,
    StartupPatch,
    Template,
    VcConnection,
)

logger = logging.getLogger(__name__)

# Officer roles that count as founders
FOUNDER_ROLES = ("director", "secretary")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _connect() -> sqlite3.Connection:
    """Connect to the database. DB_PATH is read at call time."""
    db_dir = os.path.dirname(config.DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    conn = sqlite3.connect(config.DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Yield a connection inside a BEGIN IMMEDIATE transaction."""
    conn = _connect()
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Create the entity tables."""
    conn = _connect()
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS startups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                company_number TEXT NOT NULL,
                company_name TEXT,
                incorporation_date TEXT,
                company_status TEXT,
                company_type TEXT,
                registered_address TEXT,
                sic_codes_json TEXT DEFAULT '[]',
                source TEXT,
                discovered_at TEXT,
                stage TEXT NOT NULL DEFAULT 'discovered',
                notes TEXT DEFAULT '',
                is_stealth_mode INTEGER DEFAULT 0,
                recently_announced INTEGER DEFAULT 0,
                funding_stage TEXT,
                estimated_funding TEXT,
                website TEXT,
                description TEXT,
                team_size TEXT,
                tech_stack_json TEXT DEFAULT '[]',
                news_json TEXT DEFAULT '[]',
                funding_rounds_json TEXT DEFAULT '[]',
                overall_score INTEGER,
                team_score INTEGER,
                market_score INTEGER,
                bonus_score INTEGER,
                traction_score INTEGER,
                enriched_at TEXT,
                enrich_attempted_at TEXT,
                qualified_at TEXT,
                UNIQUE(user_id, company_number)
            )
        """)
        _add_missing_columns(conn, "startups", {"enrich_attempted_at": "TEXT"})
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_startups_user_stage ON startups(user_id, stage)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_startups_company_number ON startups(company_number)"
        )

        conn.execute("""
            CREATE TABLE IF NOT EXISTS founders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                startup_id INTEGER REFERENCES startups(id),
                first_name TEXT,
                last_name TEXT,
                email TEXT,
                role TEXT,
                is_founder INTEGER DEFAULT 0,
                appointed_on TEXT,
                nationality TEXT,
                occupation TEXT,
                linkedin_url TEXT,
                github_url TEXT,
                headline TEXT,
                location TEXT,
                education_json TEXT DEFAULT '[]',
                experience_json TEXT DEFAULT '[]',
                years_of_experience INTEGER,
                is_repeat_founder INTEGER DEFAULT 0,
                is_technical_founder INTEGER DEFAULT 0,
                previous_exits INTEGER DEFAULT 0,
                has_phd INTEGER DEFAULT 0,
                has_mba INTEGER DEFAULT 0,
                education_score INTEGER,
                experience_score INTEGER,
                overall_score INTEGER,
                founder_tier TEXT,
                source TEXT,
                discovered_at TEXT,
                enriched_at TEXT
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_founders_startup ON founders(startup_id)"
        )

        conn.execute("""
            CREATE TABLE IF NOT EXISTS templates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'email',
                subject TEXT,
                body TEXT NOT NULL,
                is_default INTEGER DEFAULT 0,
                created_at TEXT
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS vc_connections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                firm TEXT,
                investment_stages_json TEXT DEFAULT '[]',
                sectors_json TEXT DEFAULT '[]',
                relationship_strength TEXT DEFAULT 'weak',
                last_contact_date TEXT,
                created_at TEXT
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS job_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                job_type TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'running',
                started_at TEXT NOT NULL,
                finished_at TEXT,
                error TEXT
            )
        """)
        # At most one running job of a type per user
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_job_runs_one_running
            ON job_runs(user_id, job_type) WHERE status = 'running'
        """)

        conn.commit()
    finally:
        conn.close()


def _add_missing_columns(conn: sqlite3.Connection, table: str, columns: dict) -> None:
    """ALTER TABLE for columns added after a database was first created."""
    existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
    for column, column_type in columns.items():
        if column not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def _apply_changes(conn: sqlite3.Connection, table: str, row_id: int, changes: dict) -> bool:
    """UPDATE only the given columns. Returns False when the row does not exist."""
    if not changes:
        row = conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (row_id,)).fetchone()
        return row is not None
    assignments = ", ".join(f"{column} = ?" for column in changes)
    cursor = conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        list(changes.values()) + [row_id],
    )
    return cursor.rowcount == 1


# ---------------------------------------------------------------------------
# Startups
# ---------------------------------------------------------------------------

def get_startup(startup_id: int) -> Optional[Startup]:
    conn = _connect()
    try:
        row = conn.execute("SELECT * FROM startups WHERE id = ?", (startup_id,)).fetchone()
        return Startup(**dict(row)) if row else None
    finally:
        conn.close()


def get_startup_by_company_number(user_id: str, company_number: str) -> Optional[Startup]:
    conn = _connect()
    try:
        row = conn.execute(
            "SELECT * FROM startups WHERE user_id = ? AND company_number = ?",
            (user_id, company_number),
        ).fetchone()
        return Startup(**dict(row)) if row else None
    finally:
        conn.close()


def list_startups(
    user_id: str,
    stages: Optional[list[str]] = None,
    limit: Optional[int] = None,
) -> list[Startup]:
    """Startups for a user, oldest discovery first, optionally filtered by stage."""
    query = "SELECT * FROM startups WHERE user_id = ?"
    params: list = [user_id]
    if stages:
        query += f" AND stage IN ({', '.join('?' for _ in stages)})"
        params.extend(stages)
    query += " ORDER BY id"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)

    conn = _connect()
    try:
        rows = conn.execute(query, params).fetchall()
        return [Startup(**dict(row)) for row in rows]
    finally:
        conn.close()


def list_startups_to_enrich(user_id: str, limit: int) -> list[Startup]:
    """
    Discovered startups in enrichment order: never attempted first (oldest
    discovery first), then the ones whose last failed attempt is oldest.
    """
    conn = _connect()
    try:
        rows = conn.execute(
            """
            SELECT * FROM startups
            WHERE user_id = ? AND stage = 'discovered'
            ORDER BY enrich_attempted_at IS NOT NULL, enrich_attempted_at, id
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
        return [Startup(**dict(row)) for row in rows]
    finally:
        conn.close()


def get_existing_company_numbers(user_id: str) -> set[str]:
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT company_number FROM startups WHERE user_id = ?", (user_id,)
        ).fetchall()
        return {row["company_number"] for row in rows}
    finally:
        conn.close()


def save_discovered_startup(
    user_id: str,
    company: dict,
    officers: list[dict],
    is_stealth_mode: bool = False,
    recently_announced: bool = False,
) -> tuple[int, bool]:
    """
    Insert a newly discovered company and its officers in one transaction.

    Idempotent on company number: if the user already has the company the
    existing id is returned and nothing is written.

    Returns (startup_id, created).
    """
    now = utc_now_iso()
    with transaction() as conn:
        existing = conn.execute(
            "SELECT id FROM startups WHERE user_id = ? AND company_number = ?",
            (user_id, company["company_number"]),
        ).fetchone()
        if existing:
            return existing["id"], False

        cursor = conn.execute(
            """
            INSERT INTO startups
            (user_id, company_number, company_name, incorporation_date, company_status,
             company_type, registered_address, sic_codes_json, source, discovered_at,
             stage, is_stealth_mode, recently_announced, funding_stage)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'discovered', ?, ?, ?)
            """,
            (
                user_id,
                company["company_number"],
                company.get("company_name", ""),
                company.get("incorporation_date", ""),
                company.get("company_status", ""),
                company.get("company_type", ""),
                company.get("registered_address", ""),
                json.dumps(company.get("sic_codes", [])),
                company.get("source", "companies_house"),
                now,
                int(is_stealth_mode),
                int(recently_announced),
                "pre-seed",
            ),
        )
        startup_id = cursor.lastrowid

        for officer in officers:
            first_name, last_name = split_officer_name(officer.get("name", ""))
            role = (officer.get("role") or "").lower()
            conn.execute(
                """
                INSERT INTO founders
                (user_id, startup_id, first_name, last_name, role, is_founder,
                 appointed_on, nationality, occupation, source, discovered_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    startup_id,
                    first_name,
                    last_name,
                    role,
                    int(any(r in role for r in FOUNDER_ROLES)),
                    officer.get("appointed_on") or None,
                    officer.get("nationality") or None,
                    officer.get("occupation") or None,
                    "companies_house",
                    now,
                ),
            )

    logger.info(
        "Saved %s (%s) with %d officers",
        company.get("company_name", ""), company["company_number"], len(officers),
    )
    return startup_id, True


def update_startup(startup_id: int, patch: StartupPatch) -> bool:
    """Write the fields set on ``patch``. Returns False if the startup is unknown."""
    with transaction() as conn:
        return _apply_changes(conn, "startups", startup_id, patch.changes())


def set_startup_notes(startup_id: int, notes: str) -> bool:
    return update_startup(startup_id, StartupPatch(notes=notes))


def record_enrichment_attempt(startup_id: int, attempted_at: Optional[str] = None) -> bool:
    """Stamp a failed enrichment attempt so the startup goes to the back of the line."""
    return update_startup(startup_id, StartupPatch(enrich_attempted_at=attempted_at or utc_now_iso()))


def save_enrichment(startup_id: int, startup_patch: StartupPatch,
                    founder_patches: dict[int, FounderPatch]) -> bool:
    """
    Write a startup's enrichment and its founders' in one transaction.

    Either every row is updated or none is. Returns False (and writes
    nothing) if the startup no longer exists.
    """
    with transaction() as conn:
        if not _apply_changes(conn, "startups", startup_id, startup_patch.changes()):
            return False
        for founder_id, patch in founder_patches.items():
            if not _apply_changes(conn, "founders", founder_id, patch.changes()):
                raise LookupError(f"Founder {founder_id} not found")
    return True


# ---------------------------------------------------------------------------
# Founders
# ---------------------------------------------------------------------------

def get_founder(founder_id: int) -> Optional[Founder]:
    conn = _connect()
    try:
        row = conn.execute("SELECT * FROM founders WHERE id = ?", (founder_id,)).fetchone()
        return Founder(**dict(row)) if row else None
    finally:
        conn.close()


def get_founders_for_startup(startup_id: int) -> list[Founder]:
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT * FROM founders WHERE startup_id = ? ORDER BY id", (startup_id,)
        ).fetchall()
        return [Founder(**dict(row)) for row in rows]
    finally:
        conn.close()


def add_founder(user_id: str, startup_id: Optional[int], first_name: str, last_name: str = "",
                email: Optional[str] = None, role: str = "director", is_founder: bool = True,
                source: str = "manual") -> int:
    """Add a founder by hand (outside registry discovery)."""
    conn = _connect()
    try:
        cursor = conn.execute(
            """
            INSERT INTO founders
            (user_id, startup_id, first_name, last_name, email, role, is_founder,
             source, discovered_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, startup_id, first_name, last_name, email, role,
             int(is_founder), source, utc_now_iso()),
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def update_founder(founder_id: int, patch: FounderPatch) -> bool:
    with transaction() as conn:
        return _apply_changes(conn, "founders", founder_id, patch.changes())


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def create_template(
    user_id: str,
    name: str,
    body: str,
    type: str = "email",
    subject: Optional[str] = None,
    is_default: bool = False,
) -> int:
    """Create a template. A new default replaces the previous default of the same type."""
    with transaction() as conn:
        if is_default:
            conn.execute(
                "UPDATE templates SET is_default = 0 WHERE user_id = ? AND type = ?",
                (user_id, type),
            )
        cursor = conn.execute(
            """
            INSERT INTO templates (user_id, name, type, subject, body, is_default, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, name, type, subject, body, int(is_default), utc_now_iso()),
        )
        return cursor.lastrowid


def get_template(template_id: int) -> Optional[Template]:
    conn = _connect()
    try:
        row = conn.execute("SELECT * FROM templates WHERE id = ?", (template_id,)).fetchone()
        return Template(**dict(row)) if row else None
    finally:
        conn.close()


def get_default_template(user_id: str, type: str = "email") -> Optional[Template]:
    conn = _connect()
    try:
        row = conn.execute(
            """
            SELECT * FROM templates
            WHERE user_id = ? AND type = ? AND is_default = 1
            ORDER BY id DESC LIMIT 1
            """,
            (user_id, type),
        ).fetchone()
        return Template(**dict(row)) if row else None
    finally:
        conn.close()


def list_templates(user_id: str) -> list[Template]:
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT * FROM templates WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [Template(**dict(row)) for row in rows]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# VC connections
# ---------------------------------------------------------------------------

def add_vc_connection(
    user_id: str,
    name: str,
    firm: str = "",
    investment_stages: Optional[list[str]] = None,
    sectors: Optional[list[str]] = None,
    relationship_strength: str = "weak",
    last_contact_date: Optional[str] = None,
) -> int:
    conn = _connect()
    try:
        cursor = conn.execute(
            """
            INSERT INTO vc_connections
            (user_id, name, firm, investment_stages_json, sectors_json,
             relationship_strength, last_contact_date, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id, name, firm,
                json.dumps(investment_stages or []),
                json.dumps(sectors or []),
                relationship_strength,
                last_contact_date,
                utc_now_iso(),
            ),
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def list_vc_connections(user_id: str) -> list[VcConnection]:
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT * FROM vc_connections WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [VcConnection(**dict(row)) for row in rows]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Job runs
# ---------------------------------------------------------------------------

def start_job(user_id: str, job_type: str, stale_after_minutes: Optional[int] = None) -> Optional[int]:
    """
    Record a job as running for a user. Returns the job id, or None when the
    same job is already running for that user.

    A running record older than ``stale_after_minutes`` (JOB_STALE_MINUTES by
    default) belongs to a process that died; it is marked failed and the new
    job starts.
    """
    stale_after = config.JOB_STALE_MINUTES if stale_after_minutes is None else stale_after_minutes
    now = datetime.now(timezone.utc)
    try:
        with transaction() as conn:
            running = conn.execute(
                "SELECT id, started_at FROM job_runs "
                "WHERE user_id = ? AND job_type = ? AND status = 'running'",
                (user_id, job_type),
            ).fetchone()
            if running is not None:
                age = now - datetime.fromisoformat(running["started_at"])
                if age.total_seconds() < stale_after * 60:
                    logger.warning("%s job %d already running for %s", job_type, running["id"], user_id)
                    return None
                conn.execute(
                    "UPDATE job_runs SET status = 'failed', finished_at = ?, error = ? WHERE id = ?",
                    (now.isoformat(), "abandoned", running["id"]),
                )
                logger.warning("Abandoned %s job %d for %s (started %s)",
                               job_type, running["id"], user_id, running["started_at"])

            cursor = conn.execute(
                "INSERT INTO job_runs (user_id, job_type, status, started_at) VALUES (?, ?, 'running', ?)",
                (user_id, job_type, now.isoformat()),
            )
            return cursor.lastrowid
    except sqlite3.IntegrityError:
        # Another process inserted its running record first
        return None


def finish_job(job_id: int, status: str = "completed", error: Optional[str] = None) -> bool:
    """running -> completed/failed. Returns False if the job was not running."""
    if status not in ("completed", "failed"):
        raise ValueError(f"Unknown job status: {status!r}")
    with transaction() as conn:
        cursor = conn.execute(
            "UPDATE job_runs SET status = ?, finished_at = ?, error = ? "
            "WHERE id = ? AND status = 'running'",
            (status, utc_now_iso(), error, job_id),
        )
        return cursor.rowcount == 1


def get_recent_jobs(user_id: str, limit: int = 10) -> list[JobRun]:
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT * FROM job_runs WHERE user_id = ? ORDER BY id DESC LIMIT ?", (user_id, limit)
        ).fetchall()
        return [JobRun(**dict(row)) for row in rows]
    finally:
        conn.close()
