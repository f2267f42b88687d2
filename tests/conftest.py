"""Shared fixtures: a fresh SQLite database per test and a few entity builders."""

import pytest

from sourcing import config, db, ratelimit
from sourcing.outreach.db import init_outreach_db

USER = "alice"
OTHER_USER = "bob"

# Fixed clock (epoch ms) so queue schedules are exact
NOW = 1_700_000_000_000
MINUTE = 60 * 1000


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    path = str(tmp_path / "sourcing.db")
    monkeypatch.setattr(config, "DB_PATH", path)
    db.init_db()
    init_outreach_db()
    return path


@pytest.fixture(autouse=True)
def fresh_rate_limits():
    ratelimit.reset_all()


def make_startup(user_id=USER, number="12345678", name="Acme AI Ltd", sic_codes=None,
                 stealth=False, recent=False, officers=None):
    """Store a discovered startup. Officers default to one director without email."""
    company = {
        "company_number": number,
        "company_name": name,
        "company_status": "active",
        "company_type": "ltd",
        "incorporation_date": "2024-01-15",
        "sic_codes": ["62012"] if sic_codes is None else sic_codes,
    }
    if officers is None:
        officers = [{"name": "SMITH, Jane", "role": "director"}]
    startup_id, _ = db.save_discovered_startup(
        user_id, company, officers, is_stealth_mode=stealth, recently_announced=recent
    )
    return startup_id


def make_founder(startup_id=None, user_id=USER, first_name="Jane", last_name="Smith",
                 email="jane@example.com", **kwargs):
    return db.add_founder(user_id, startup_id, first_name, last_name, email=email, **kwargs)


@pytest.fixture
def startup_id():
    return make_startup(officers=[])


@pytest.fixture
def founder_id(startup_id):
    return make_founder(startup_id)
