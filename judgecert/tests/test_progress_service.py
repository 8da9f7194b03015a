"""
Scoring progress tests: category and contest completion percentages.
"""
import pytest

from judgecert.errors import NotFoundError
from judgecert.services.progress_service import (
    average_percentage,
    category_scoring_progress,
    completion_percentage,
    contest_scoring_progress,
)
from judgecert.tests.factories import add_score, make_category, make_contest, make_event


class TestPercentages:
    """Whole-number percentages, half-up, zero-safe."""

    def test_rounds_half_up(self):
        assert completion_percentage(1, 8) == 13  # 12.5
        assert completion_percentage(5, 6) == 83
        assert completion_percentage(2, 3) == 67

    def test_zero_denominator_is_zero(self):
        assert completion_percentage(0, 0) == 0
        assert completion_percentage(4, 0) == 0

    def test_average(self):
        assert average_percentage([50, 100]) == 75
        assert average_percentage([50, 67]) == 59  # 58.5
        assert average_percentage([]) == 0


class TestCategoryScoringProgress:

    async def test_fully_scored_category(self, db, world):
        progress = await category_scoring_progress(db, world.solo.category.id)

        assert progress["category_name"] == "Solo"
        assert progress["total_contestants"] == 3
        assert progress["total_judges"] == 2
        assert progress["expected_scores"] == 6
        assert progress["total_scores"] == 6
        assert progress["completion_percentage"] == 100

    async def test_partially_scored_category(self, db):
        event = await make_event(db)
        contest = await make_contest(db, event)
        seeded = await make_category(db, contest, judges=2, contestants=3, scored=False)

        pairs = [(j, c) for j in seeded.judges for c in seeded.contestants][:5]
        for judge, contestant in pairs:
            await add_score(db, seeded.category, judge, contestant, seeded.criteria[0])
        await db.commit()

        progress = await category_scoring_progress(db, seeded.category.id)

        assert progress["total_scores"] == 5
        assert progress["completion_percentage"] == 83

    async def test_category_without_assignments(self, db):
        event = await make_event(db)
        contest = await make_contest(db, event)
        seeded = await make_category(db, contest, judges=0, contestants=0)
        await db.commit()

        progress = await category_scoring_progress(db, seeded.category.id)

        assert progress["expected_scores"] == 0
        assert progress["completion_percentage"] == 0

    async def test_missing_category(self, db):
        with pytest.raises(NotFoundError) as exc:
            await category_scoring_progress(db, 9999)
        assert exc.value.status_code == 404
        assert exc.value.code == "CATEGORY_NOT_FOUND"


class TestContestScoringProgress:

    async def test_breakdown_and_overall_average(self, db):
        event = await make_event(db, "Regional")
        contest = await make_contest(db, event, "Instrumental")

        # 2 judges x 2 contestants, only judge 1 has scored: 50%
        half = await make_category(db, contest, "Piano", judges=2, contestants=2, scored=False)
        for contestant in half.contestants:
            await add_score(db, half.category, half.judges[0], contestant, half.criteria[0])

        # 1 judge x 1 contestant, scored: 100%
        full = await make_category(db, contest, "Violin", judges=1, contestants=1)
        await db.commit()

        progress = await contest_scoring_progress(db, contest.id)

        assert progress["contest_name"] == "Instrumental"
        assert progress["event_name"] == "Regional"
        assert [c["completion_percentage"] for c in progress["categories"]] == [50, 100]
        assert progress["overall_completion"] == 75

        piano_judges = progress["categories"][0]["judges"]
        assert [j["completed"] for j in piano_judges] == [2, 0]
        assert [j["total"] for j in piano_judges] == [2, 2]
        assert [j["completion_percentage"] for j in piano_judges] == [100, 0]
        assert progress["categories"][1]["judges"][0]["judge_id"] == full.judges[0].id

    async def test_judge_completion_rounds(self, db):
        event = await make_event(db)
        contest = await make_contest(db, event)
        seeded = await make_category(db, contest, judges=1, contestants=3, scored=False)
        for contestant in seeded.contestants[:2]:
            await add_score(db, seeded.category, seeded.judges[0], contestant, seeded.criteria[0])
        await db.commit()

        progress = await contest_scoring_progress(db, contest.id)
        judge = progress["categories"][0]["judges"][0]

        assert judge["completed"] == 2
        assert judge["total"] == 3
        assert judge["completion_percentage"] == 67

    async def test_contest_without_categories(self, db):
        event = await make_event(db)
        contest = await make_contest(db, event, "Empty")
        await db.commit()

        progress = await contest_scoring_progress(db, contest.id)

        assert progress["categories"] == []
        assert progress["overall_completion"] == 0

    async def test_missing_contest(self, db):
        with pytest.raises(NotFoundError) as exc:
            await contest_scoring_progress(db, 4242)
        assert exc.value.code == "CONTEST_NOT_FOUND"
