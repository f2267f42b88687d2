"""
Automated sourcing pipeline.

Each run goes through five steps in order:

1. discover  new tech/fintech companies from Companies House, with officers
2. enrich    founders (profile + scores) and company signals (traction)
3. qualify   score discovered/researching startups and move them
4. match     qualified startups against the user's VC connections
5. queue     first-touch outreach to founders of qualified startups

A failure on one company or founder is logged, added to the run report and
skipped; the rest of the step carries on. Steps are safe to re-run: stored
companies are never rediscovered, scored founders are not re-enriched and a
founder who was ever queued is not queued again.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from sourcing import companies_house, config, db, enrichment, matching, scoring, stages
from sourcing.models import FounderPatch, StartupPatch
from sourcing.outreach.batcher import enqueue_batch
from sourcing.outreach.db import get_contacted_founder_ids
from sourcing.outreach.templates import resolve_template

logger = logging.getLogger(__name__)

STEPS = ('discover', 'enrich', 'qualify', 'match', 'queue')
JOB_TYPE = "pipeline"


@dataclass
class PipelineReport:
    user_id: str
    started_at: str = ""
    finished_at: str = ""
    dry_run: bool = False
    job_id: Optional[int] = None
    skipped: Optional[str] = None   # set when the run did not start
    discover: dict = field(default_factory=dict)
    enrich: dict = field(default_factory=dict)
    qualify: dict = field(default_factory=dict)
    match: dict = field(default_factory=dict)
    queue: dict = field(default_factory=dict)
    errors: list = field(default_factory=list)   # [{step, entity, error}]

    def to_dict(self) -> dict:
        return asdict(self)


class AutoPipeline:
    """
    One sourcing sweep for a user.

    Usage:
        report = AutoPipeline(user_id).run()

    ``registry`` and ``enricher`` default to the companies_house and
    enrichment modules; anything with the same functions can stand in.
    """

    def __init__(self, user_id: str, registry=None, enricher=None, dry_run: bool = False):
        self.user_id = user_id
        self.registry = registry or companies_house
        self.enricher = enricher or enrichment
        self.dry_run = dry_run
        self.report = PipelineReport(user_id=user_id, dry_run=dry_run)
        self._skipped_startups: set = set()

    def run(self) -> PipelineReport:
        """
        Run every step once. A real run is recorded in job_runs; when another
        run for the same user is still going, nothing happens and the report
        says so in ``skipped``.
        """
        self.report.started_at = db.utc_now_iso()
        logger.info("Pipeline run for %s%s", self.user_id, " [DRY RUN]" if self.dry_run else "")

        if not self.dry_run:
            self.report.job_id = db.start_job(self.user_id, JOB_TYPE)
            if self.report.job_id is None:
                self.report.skipped = "already running"
                self.report.finished_at = db.utc_now_iso()
                logger.warning("Pipeline already running for %s, skipping", self.user_id)
                return self.report

        try:
            self._run_steps()
        except BaseException as exc:
            if self.report.job_id is not None:
                db.finish_job(self.report.job_id, "failed", f"{type(exc).__name__}: {exc}")
            raise
        if self.report.job_id is not None:
            db.finish_job(self.report.job_id, "completed")

        self.report.finished_at = db.utc_now_iso()
        logger.info(
            "Pipeline done: %d saved, %d enriched, %d qualified, %d queued, %d errors",
            self.report.discover.get('saved', 0),
            self.report.enrich.get('enriched', 0),
            self.report.qualify.get('qualified', 0),
            self.report.queue.get('queued', 0),
            len(self.report.errors),
        )
        return self.report

    def _run_steps(self) -> None:
        for step in STEPS:
            try:
                setattr(self.report, step, getattr(self, f"_{step}")())
            except Exception as exc:
                logger.exception("Pipeline step %s failed", step)
                self._record_error(step, None, exc)

    def _record_error(self, step: str, entity: Optional[str], exc: Exception) -> None:
        self.report.errors.append({
            'step': step,
            'entity': entity,
            'error': f"{type(exc).__name__}: {exc}",
        })

    # -----------------------------------------------------------------------
    # 1. Discover
    # -----------------------------------------------------------------------

    def _discover(self) -> dict:
        result = {'candidates': 0, 'new': 0, 'saved': 0}
        existing = db.get_existing_company_numbers(self.user_id)

        candidates = self.registry.discover_recent_companies(
            config.TECH_SIC_CODES + config.FINTECH_SIC_CODES
        )
        result['candidates'] = len(candidates)

        new = [c for c in candidates if c['company_number'] not in existing]
        result['new'] = len(new)

        for company in new[:config.DISCOVERY_BATCH_SIZE]:
            number = company['company_number']
            try:
                officers = self.registry.get_officers(number)
                stealth, recent = scoring.incorporation_flags(company.get('incorporation_date', ''))
                if self.dry_run:
                    logger.info("[DRY RUN] Would save %s (%s) with %d officers",
                                company.get('company_name'), number, len(officers))
                    continue
                _, created = db.save_discovered_startup(
                    self.user_id, company, officers,
                    is_stealth_mode=stealth, recently_announced=recent,
                )
                if created:
                    result['saved'] += 1
            except Exception as exc:
                logger.error("Discovery failed for %s: %s", number, exc)
                self._record_error('discover', number, exc)

        return result

    # -----------------------------------------------------------------------
    # 2. Enrich
    # -----------------------------------------------------------------------

    def _enrich(self) -> dict:
        result = {'startups': 0, 'enriched': 0, 'founders_scored': 0, 'skipped': 0}
        startups = db.list_startups_to_enrich(self.user_id, limit=config.ENRICHMENT_BATCH_SIZE)
        result['startups'] = len(startups)

        for startup in startups:
            try:
                scored = self._enrich_founders(startup)
                signals = self.enricher.enrich_company(startup)
            except Exception as exc:
                logger.error("Enrichment failed for %s: %s", startup.company_name, exc)
                self._record_error('enrich', startup.company_number, exc)
                result['skipped'] += 1
                self._skipped_startups.add(startup.id)
                if not self.dry_run:
                    db.record_enrichment_attempt(startup.id)
                continue

            now = db.utc_now_iso()
            patch = StartupPatch(
                stage='researching',
                website=signals.website,
                description=signals.description,
                news_articles=signals.news_articles,
                funding_rounds=signals.funding_rounds,
                team_size=signals.team_size,
                tech_stack=signals.tech_stack,
                funding_stage=signals.funding_stage or startup.funding_stage,
                traction_score=scoring.traction_score(signals),
                team_score=scoring.team_score(scored['scores']),
                enriched_at=now,
                enrich_attempted_at=now,
            )
            if signals.estimated_funding:
                patch.estimated_funding = signals.estimated_funding
            if scored['stealth']:
                patch.is_stealth_mode = True
            if scored['recent']:
                patch.recently_announced = True

            if self.dry_run:
                logger.info("[DRY RUN] Would move %s to researching", startup.company_name)
                continue
            try:
                db.save_enrichment(startup.id, patch, scored['founders'])
            except Exception as exc:
                logger.error("Saving enrichment failed for %s: %s", startup.company_name, exc)
                self._record_error('enrich', startup.company_number, exc)
                result['skipped'] += 1
                self._skipped_startups.add(startup.id)
                continue
            result['enriched'] += 1
            result['founders_scored'] += len(scored['founders'])

        return result

    def _enrich_founders(self, startup) -> dict:
        """
        Enrich and score the startup's unscored founders without writing them.

        Returns all founder scores, the stealth/recent flags and a
        {founder_id: FounderPatch} for the newly scored founders.
        """
        scored = {'scores': [], 'stealth': False, 'recent': False, 'founders': {}}
        for founder in db.get_founders_for_startup(startup.id):
            if not founder.is_founder:
                continue
            if founder.overall_score is not None:
                scored['scores'].append(founder.overall_score)
                continue

            try:
                profile = self.enricher.enrich_founder(founder, startup)
            except Exception as exc:
                logger.error("Founder enrichment failed for %s: %s", founder.full_name, exc)
                self._record_error('enrich', f"founder:{founder.id}", exc)
                continue
            if profile is None:
                continue

            scores = scoring.score_founder(profile)
            scored['scores'].append(scores.overall_score)
            scored['stealth'] = scored['stealth'] or profile.is_stealth_mode
            scored['recent'] = scored['recent'] or profile.is_recently_announced

            patch = FounderPatch(
                linkedin_url=profile.linkedin_url,
                github_url=profile.github_url,
                headline=profile.headline,
                location=profile.location,
                education=profile.education,
                experience=profile.experience,
                years_of_experience=profile.years_of_experience,
                is_repeat_founder=profile.is_repeat_founder,
                is_technical_founder=profile.is_technical_founder,
                previous_exits=profile.previous_exits,
                has_phd=profile.has_phd,
                has_mba=profile.has_mba,
                education_score=scores.education_score,
                experience_score=scores.experience_score,
                overall_score=scores.overall_score,
                founder_tier=scores.founder_tier,
                enriched_at=db.utc_now_iso(),
            )
            if profile.email and not founder.email:
                patch.email = profile.email
            scored['founders'][founder.id] = patch
            logger.info("Scored %s: %d (%s)", founder.full_name, scores.overall_score, scores.founder_tier)

        return scored

    # -----------------------------------------------------------------------
    # 3. Qualify
    # -----------------------------------------------------------------------

    def _qualify(self) -> dict:
        if self.dry_run:
            return {'skipped': 'dry run'}
        return stages.qualify_pending(self.user_id, exclude=self._skipped_startups)

    # -----------------------------------------------------------------------
    # 4. Match
    # -----------------------------------------------------------------------

    def _match(self) -> dict:
        result = {'startups': 0, 'matches': 0, 'details': []}
        connections = db.list_vc_connections(self.user_id)
        if not connections:
            logger.info("No VC connections to match against")
            return result

        for startup in db.list_startups(self.user_id, stages=['qualified']):
            try:
                matches = matching.find_matches(startup, connections)
            except Exception as exc:
                self._record_error('match', startup.company_number, exc)
                continue
            result['startups'] += 1
            if not matches:
                continue
            result['matches'] += len(matches)
            result['details'].append({
                'startup_id': startup.id,
                'company_name': startup.company_name,
                'matches': [asdict(m) for m in matches],
            })
        return result

    # -----------------------------------------------------------------------
    # 5. Queue
    # -----------------------------------------------------------------------

    def _queue(self) -> dict:
        result = {'candidates': 0, 'queued': 0, 'skipped': 0, 'skipped_ids': []}
        already = get_contacted_founder_ids(self.user_id)

        qualified = db.list_startups(self.user_id, stages=['qualified'])
        qualified.sort(key=lambda s: s.overall_score or 0, reverse=True)

        founder_ids = []
        for startup in qualified:
            for founder in db.get_founders_for_startup(startup.id):
                if founder.is_founder and founder.id not in already:
                    founder_ids.append(founder.id)
        result['candidates'] = len(founder_ids)

        if not founder_ids:
            return result
        if self.dry_run:
            logger.info("[DRY RUN] Would queue outreach to %d founders", len(founder_ids))
            return result

        template = resolve_template(self.user_id, 'email')
        batch = enqueue_batch(self.user_id, founder_ids, template)
        result.update(batch.to_dict())
        return result


def run_pipeline(user_id: Optional[str] = None, dry_run: bool = False) -> PipelineReport:
    """Run one sweep for a user (defaults to SOURCING_USER_ID)."""
    return AutoPipeline(user_id or config.DEFAULT_USER_ID, dry_run=dry_run).run()
