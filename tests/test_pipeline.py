"""Auto-pipeline sweeps with fake registry and enrichment collaborators."""

import pytest

from sourcing import config, db
from sourcing.companies_house import RegistryError
from sourcing.enrichment import EnrichmentError
from sourcing.models import CompanySignals, FounderProfile
from sourcing.outreach import db as queue
from sourcing.pipeline import AutoPipeline

from tests.conftest import OTHER_USER, USER


def _company(number, name):
    return {
        "company_number": number,
        "company_name": name,
        "company_status": "active",
        "company_type": "ltd",
        "incorporation_date": "",
        "registered_address": "1 High Street, London",
        "sic_codes": ["62011"],
    }


class FakeRegistry:

    def __init__(self, companies, officers=None, failing=()):
        self.companies = companies
        self.officers = officers or {}
        self.failing = set(failing)
        self.officer_calls = []

    def discover_recent_companies(self, sic_codes):
        return list(self.companies)

    def get_officers(self, company_number):
        self.officer_calls.append(company_number)
        if company_number in self.failing:
            raise RegistryError(f"Companies House returned 500 for {company_number}")
        return self.officers.get(company_number, [{"name": "SMITH, Jane", "role": "director"}])


class FakeEnricher:

    def __init__(self, failing_companies=()):
        self.failing_companies = set(failing_companies)
        self.founder_calls = 0

    def enrich_founder(self, founder, startup):
        self.founder_calls += 1
        return FounderProfile(
            email=f"{founder.first_name.lower()}@{startup.company_number}.example.com",
            education=[{"school": "University of Oxford"}],
            experience=[
                {"company": "Stripe", "title": "Engineer"},
                {"company": "Monzo", "title": "Engineer"},
                {"company": "Google", "title": "Engineer"},
            ],
            years_of_experience=10,
        )

    def enrich_company(self, startup):
        if startup.company_number in self.failing_companies:
            raise EnrichmentError("People-data API returned 503 for /company/enrich")
        return CompanySignals(website="https://example.com", team_size="1-10")


def test_full_sweep_moves_startup_to_queued_outreach():
    registry = FakeRegistry([_company("00000001", "Acme AI Ltd")])

    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()

    assert report.errors == []
    assert report.discover == {"candidates": 1, "new": 1, "saved": 1}
    assert report.enrich["enriched"] == 1
    assert report.enrich["founders_scored"] == 1
    assert report.qualify["qualified"] == 1
    assert report.queue["queued"] == 1

    startup = db.get_startup_by_company_number(USER, "00000001")
    assert startup.stage == "qualified"
    assert startup.team_score == 84
    assert startup.traction_score == 20
    assert startup.overall_score == 80

    founder = db.get_founders_for_startup(startup.id)[0]
    assert founder.first_name == "Jane"
    assert founder.last_name == "SMITH"
    assert founder.founder_tier == "exceptional"
    assert founder.email == "jane@00000001.example.com"

    [item] = queue.list_items(USER)
    assert item.founder_id == founder.id
    assert item.startup_id == startup.id
    assert "Jane" in item.message
    assert "Acme AI Ltd" in item.subject


def test_second_sweep_repeats_nothing():
    registry = FakeRegistry([_company("00000001", "Acme AI Ltd")])
    enricher = FakeEnricher()
    AutoPipeline(USER, registry=registry, enricher=enricher).run()

    report = AutoPipeline(USER, registry=registry, enricher=enricher).run()

    assert report.discover["new"] == 0
    assert report.discover["saved"] == 0
    assert report.enrich["startups"] == 0
    assert report.queue["candidates"] == 0
    assert enricher.founder_calls == 1
    assert registry.officer_calls == ["00000001"]
    assert len(queue.list_items(USER)) == 1


def test_failed_company_is_skipped_and_retried_next_run():
    registry = FakeRegistry([
        _company("00000001", "Acme AI Ltd"),
        _company("00000002", "Beta Labs Ltd"),
    ])
    enricher = FakeEnricher(failing_companies={"00000001"})

    report = AutoPipeline(USER, registry=registry, enricher=enricher).run()

    assert report.enrich["skipped"] == 1
    assert report.enrich["enriched"] == 1
    assert len(report.errors) == 1
    assert report.errors[0]["step"] == "enrich"
    assert report.errors[0]["entity"] == "00000001"
    assert "EnrichmentError" in report.errors[0]["error"]

    skipped = db.get_startup_by_company_number(USER, "00000001")
    assert skipped.stage == "discovered"
    assert skipped.enriched_at is None
    assert skipped.enrich_attempted_at
    assert skipped.traction_score is None
    assert skipped.overall_score is None
    # Founder was looked up but nothing about them was written
    founder = db.get_founders_for_startup(skipped.id)[0]
    assert founder.overall_score is None
    assert founder.email is None
    assert founder.enriched_at is None
    enriched = db.get_startup_by_company_number(USER, "00000002")
    assert enriched.stage == "qualified"
    assert enriched.traction_score == 20

    enricher.failing_companies.clear()
    report = AutoPipeline(USER, registry=registry, enricher=enricher).run()

    assert report.errors == []
    assert report.enrich["enriched"] == 1
    assert report.enrich["founders_scored"] == 1
    assert db.get_startup_by_company_number(USER, "00000001").stage == "qualified"
    assert db.get_founders_for_startup(skipped.id)[0].overall_score == 84
    assert len(queue.list_items(USER)) == 2


def test_failing_companies_do_not_block_later_ones(monkeypatch):
    monkeypatch.setattr(config, "ENRICHMENT_BATCH_SIZE", 2)
    registry = FakeRegistry([
        _company("00000001", "Acme AI Ltd"),
        _company("00000002", "Beta Labs Ltd"),
        _company("00000003", "Gamma Data Ltd"),
        _company("00000004", "Delta Pay Ltd"),
    ])
    enricher = FakeEnricher(failing_companies={"00000001", "00000002", "00000003"})

    first = AutoPipeline(USER, registry=registry, enricher=enricher).run()
    second = AutoPipeline(USER, registry=registry, enricher=enricher).run()

    assert first.enrich["skipped"] == 2
    assert [e["entity"] for e in second.errors] == ["00000003"]
    assert second.enrich["enriched"] == 1
    assert db.get_startup_by_company_number(USER, "00000004").stage == "qualified"

    # Every company keeps getting its turn, least recently tried first
    third = AutoPipeline(USER, registry=registry, enricher=enricher).run()
    assert [e["entity"] for e in third.errors] == ["00000001", "00000002"]


def test_overlapping_run_is_skipped():
    job_id = db.start_job(USER, "pipeline")
    registry = FakeRegistry([_company("00000001", "Acme AI Ltd")])

    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()

    assert report.skipped == "already running"
    assert report.job_id is None
    assert report.discover == {}
    assert registry.officer_calls == []
    assert db.list_startups(USER) == []

    # Another user is not blocked
    other = AutoPipeline(OTHER_USER, registry=registry, enricher=FakeEnricher()).run()
    assert other.skipped is None

    db.finish_job(job_id)
    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()
    assert report.skipped is None
    assert report.discover["saved"] == 1


def test_run_is_recorded_as_a_job():
    report = AutoPipeline(USER, registry=FakeRegistry([]), enricher=FakeEnricher()).run()

    [job] = db.get_recent_jobs(USER)
    assert job.id == report.job_id
    assert job.job_type == "pipeline"
    assert job.status == "completed"
    assert job.finished_at


def test_crashed_run_releases_its_job():
    registry = FakeRegistry([])

    def interrupted(sic_codes):
        raise KeyboardInterrupt

    registry.discover_recent_companies = interrupted

    with pytest.raises(KeyboardInterrupt):
        AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()

    [job] = db.get_recent_jobs(USER)
    assert job.status == "failed"
    assert "KeyboardInterrupt" in job.error
    assert db.start_job(USER, "pipeline") is not None


def test_officer_lookup_failure_is_retried_next_run():
    registry = FakeRegistry(
        [_company("00000001", "Acme AI Ltd"), _company("00000002", "Beta Labs Ltd")],
        failing={"00000001"},
    )

    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()

    assert report.discover["saved"] == 1
    assert report.errors[0]["step"] == "discover"
    assert report.errors[0]["entity"] == "00000001"
    assert db.get_startup_by_company_number(USER, "00000001") is None
    assert db.get_startup_by_company_number(USER, "00000002") is not None

    registry.failing.clear()
    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()

    assert report.discover == {"candidates": 2, "new": 1, "saved": 1}
    assert report.errors == []
    assert db.get_startup_by_company_number(USER, "00000001").stage == "qualified"
    assert len(queue.list_items(USER)) == 2


def test_step_failure_does_not_abort_run():
    registry = FakeRegistry([])

    def unavailable(sic_codes):
        raise RegistryError("No Companies House API key configured")

    registry.discover_recent_companies = unavailable

    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()

    assert [e["step"] for e in report.errors] == ["discover"]
    assert report.discover == {}
    assert report.qualify["processed"] == 0
    assert report.finished_at


def test_non_founder_officers_are_not_contacted():
    registry = FakeRegistry(
        [_company("00000001", "Acme AI Ltd")],
        officers={"00000001": [
            {"name": "SMITH, Jane", "role": "director"},
            {"name": "Acme Nominees", "role": "corporate-nominee"},
        ]},
    )

    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()

    assert report.enrich["founders_scored"] == 1
    assert report.queue["queued"] == 1


def test_dry_run_writes_nothing():
    registry = FakeRegistry([_company("00000001", "Acme AI Ltd")])

    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher(), dry_run=True).run()

    assert report.discover["saved"] == 0
    assert report.qualify == {"skipped": "dry run"}
    assert db.list_startups(USER) == []
    assert queue.list_items(USER) == []


def test_matches_reported_for_qualified_startups():
    db.add_vc_connection(USER, "Sam Partner", firm="Seedcamp",
                         investment_stages=["pre-seed", "seed"], sectors=["software"],
                         relationship_strength="strong")
    registry = FakeRegistry([_company("00000001", "Acme AI Ltd")])

    report = AutoPipeline(USER, registry=registry, enricher=FakeEnricher()).run()

    assert report.match["matches"] == 1
    [detail] = report.match["details"]
    assert detail["company_name"] == "Acme AI Ltd"
    assert detail["matches"][0]["score"] == 85
