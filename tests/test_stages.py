"""Stage machine: qualification, contact transition and funnel stats."""

import pytest

from sourcing import config, db, stages
from sourcing.models import FounderPatch, StartupPatch

from tests.conftest import USER, OTHER_USER, make_founder, make_startup


def _score_founder(founder_id, score):
    db.update_founder(founder_id, FounderPatch(overall_score=score))


class TestQualifyStartup:

    def test_qualifies_strong_startup(self):
        startup_id = make_startup(sic_codes=["62011"], stealth=True, officers=[])
        _score_founder(make_founder(startup_id), 80)

        result = stages.qualify_startup(startup_id)

        # round(0.5 * 80 + 0.4 * 95 + 10) = 88
        assert result.overall_score == 88
        assert result.tier == "A"
        assert result.status == "qualified"
        assert result.moved
        startup = db.get_startup(startup_id)
        assert startup.stage == "qualified"
        assert startup.team_score == 80
        assert startup.market_score == 95
        assert startup.bonus_score == 10
        assert startup.qualified_at

    def test_second_run_is_idempotent(self):
        startup_id = make_startup(sic_codes=["62011"], officers=[])
        _score_founder(make_founder(startup_id), 80)

        first = stages.qualify_startup(startup_id)
        qualified_at = db.get_startup(startup_id).qualified_at
        second = stages.qualify_startup(startup_id)

        assert second.overall_score == first.overall_score
        assert not second.moved
        startup = db.get_startup(startup_id)
        assert startup.stage == "qualified"
        assert startup.qualified_at == qualified_at

    def test_without_scored_founders_nothing_is_written(self):
        startup_id = make_startup()  # one unscored director

        result = stages.qualify_startup(startup_id)

        assert result.status == "needs_research"
        startup = db.get_startup(startup_id)
        assert startup.stage == "discovered"
        assert startup.overall_score is None

    def test_weak_startup_is_passed(self):
        startup_id = make_startup(sic_codes=["01110"], officers=[])
        _score_founder(make_founder(startup_id), 20)

        result = stages.qualify_startup(startup_id)

        # round(10 + 16) = 26
        assert result.overall_score == 26
        assert result.status == "passed"
        assert db.get_startup(startup_id).stage == "passed"

    def test_watchlist_still_moves_to_qualified(self):
        startup_id = make_startup(sic_codes=["62090"], officers=[])
        _score_founder(make_founder(startup_id), 50)

        result = stages.qualify_startup(startup_id)

        # round(25 + 28) = 53
        assert result.tier == "C"
        assert result.status == "watchlist"
        assert db.get_startup(startup_id).stage == "qualified"

    def test_multiple_strong_founders_bonus(self):
        startup_id = make_startup(sic_codes=["62090"], officers=[])
        _score_founder(make_founder(startup_id), 70)
        _score_founder(make_founder(startup_id, first_name="Tom", email="tom@example.com"), 60)

        result = stages.qualify_startup(startup_id)

        assert result.bonus_score == 5
        assert result.team_score == 65

    def test_later_stage_keeps_stage_but_refreshes_scores(self):
        startup_id = make_startup(officers=[])
        _score_founder(make_founder(startup_id), 80)
        stages.set_stage(startup_id, "meeting")

        result = stages.qualify_startup(startup_id)

        assert not result.moved
        startup = db.get_startup(startup_id)
        assert startup.stage == "meeting"
        assert startup.overall_score == result.overall_score

    def test_unknown_startup(self):
        with pytest.raises(LookupError):
            stages.qualify_startup(999)


class TestSetStage:

    def test_any_jump_is_allowed(self):
        startup_id = make_startup()
        assert stages.set_stage(startup_id, "introduced") == "discovered"
        assert stages.set_stage(startup_id, "passed") == "introduced"
        assert db.get_startup(startup_id).stage == "passed"

    def test_unknown_stage(self):
        startup_id = make_startup()
        with pytest.raises(ValueError):
            stages.set_stage(startup_id, "archived")

    def test_unknown_startup(self):
        with pytest.raises(LookupError):
            stages.set_stage(42, "qualified")

    def test_scoped_to_owner(self):
        startup_id = make_startup(user_id=OTHER_USER)
        with pytest.raises(LookupError):
            stages.set_stage(startup_id, "passed", user_id=USER)
        assert db.get_startup(startup_id).stage == "discovered"

        assert stages.set_stage(startup_id, "meeting", user_id=OTHER_USER) == "discovered"
        assert db.get_startup(startup_id).stage == "meeting"


class TestMarkContacted:

    def test_only_from_qualified(self):
        startup_id = make_startup()
        assert stages.mark_contacted(startup_id) is False
        assert db.get_startup(startup_id).stage == "discovered"

        stages.set_stage(startup_id, "qualified")
        assert stages.mark_contacted(startup_id) is True
        assert db.get_startup(startup_id).stage == "contacted"

        # Already moved: second call does nothing
        assert stages.mark_contacted(startup_id) is False

    def test_does_not_pull_back_later_stages(self):
        startup_id = make_startup()
        stages.set_stage(startup_id, "meeting")
        assert stages.mark_contacted(startup_id) is False
        assert db.get_startup(startup_id).stage == "meeting"


def test_tier_projection():
    assert stages.tier_for_score(80) == "A"
    assert stages.tier_for_score(65) == "B"
    assert stages.tier_for_score(50) == "C"
    assert stages.tier_for_score(49) == "D"
    assert stages.tier_for_score(None) == "D"


def test_qualify_pending_counts():
    strong = make_startup(number="00000001", sic_codes=["62011"], officers=[])
    _score_founder(make_founder(strong), 80)
    make_startup(number="00000002")  # unscored director
    weak = make_startup(number="00000003", sic_codes=["01110"], officers=[])
    _score_founder(make_founder(weak, first_name="Sam", email="sam@example.com"), 10)

    counts = stages.qualify_pending(USER)

    # The unscored startup waits for research and is not processed
    assert counts["processed"] == 2
    assert counts["qualified"] == 1
    assert counts["passed"] == 1
    assert counts["needs_research"] == 1
    assert counts["errors"] == 0


def test_pipeline_stats():
    a = make_startup(number="00000001", stealth=True)
    b = make_startup(number="00000002", recent=True)
    make_startup(number="00000003")
    make_startup(user_id=OTHER_USER, number="00000004")
    stages.set_stage(a, "qualified")
    db.update_startup(a, StartupPatch(overall_score=80))
    db.update_startup(b, StartupPatch(overall_score=61))

    stats = stages.get_pipeline_stats(USER)

    assert stats["total"] == 3
    assert stats["by_stage"]["qualified"] == 1
    assert stats["by_stage"]["discovered"] == 2
    assert stats["by_stage"]["passed"] == 0
    assert stats["stealth"] == 1
    assert stats["recently_announced"] == 1
    assert stats["average_score"] == 70


def test_unresearched_startups_do_not_fill_the_batch(monkeypatch):
    monkeypatch.setattr(config, "QUALIFICATION_BATCH_SIZE", 3)
    for number in ("00000001", "00000002", "00000003"):
        make_startup(number=number)  # director never scored
    scored = make_startup(number="00000004", sic_codes=["62011"], officers=[])
    _score_founder(make_founder(scored), 90)

    counts = stages.qualify_pending(USER)

    assert counts["processed"] == 1
    assert counts["qualified"] == 1
    assert counts["needs_research"] == 3
    assert db.get_startup(scored).stage == "qualified"

    # Still waiting, still not processed
    counts = stages.qualify_pending(USER)
    assert counts["processed"] == 0
    assert counts["needs_research"] == 3


def test_excluded_startups_are_left_alone():
    startup_id = make_startup(sic_codes=["62011"], officers=[])
    _score_founder(make_founder(startup_id), 90)

    counts = stages.qualify_pending(USER, exclude={startup_id})

    assert counts["processed"] == 0
    assert db.get_startup(startup_id).stage == "discovered"
