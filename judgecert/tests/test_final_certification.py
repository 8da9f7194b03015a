"""
Final certification tests: confirmations, prerequisites, auditor-only access,
score locking and double-submission.
"""
import asyncio

import pytest
from sqlalchemy import func, select

from judgecert.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from judgecert.orm import CategoryCertification, Score, UserRole
from judgecert.schemas.certification import FinalCertificationConfirmation
from judgecert.services import final_certification_service
from judgecert.services.certification_ledger import (
    certification_progress,
    record_judge_contestant_signoff,
    record_role_signoff,
)
from judgecert.services.final_certification_service import (
    prevent_score_modification,
    submit_final_certification,
)
from judgecert.state_machines.certification_stage import CertificationStateMachine
from judgecert.tests.factories import ArrivalGate, add_score, score_flags, seed_world

CONFIRMED = {"confirmation1": True, "confirmation2": True}


async def prepare(db, world, seeded=None):
    """Judge and tally stages complete for ``seeded`` (default: Solo)."""
    seeded = seeded or world.solo
    for judge in seeded.judges:
        for contestant in seeded.contestants:
            await record_judge_contestant_signoff(db, judge.id, contestant.id, seeded.category.id)
    for user in world.tally_users:
        await record_role_signoff(db, seeded.category.id, "TALLY", user.id)
    return seeded


class TestConfirmations:

    @pytest.mark.parametrize("confirmations", [
        None,
        {},
        {"confirmation1": True},
        {"confirmation1": True, "confirmation2": False},
        {"confirmation1": "I confirm", "confirmation2": ""},
        "I confirm",
        FinalCertificationConfirmation(confirmation1=False, confirmation2=True),
    ])
    async def test_both_confirmations_required(self, db, world, confirmations):
        await prepare(db, world)
        with pytest.raises(ValidationError) as exc:
            await submit_final_certification(
                db, world.solo.category.id, world.auditor.id, confirmations
            )
        assert exc.value.code == "CONFIRMATION_REQUIRED"
        assert exc.value.message == "Both confirmations are required"

    async def test_model_accepted(self, db, world):
        await prepare(db, world)
        row = await submit_final_certification(
            db, world.solo.category.id, world.auditor.id,
            FinalCertificationConfirmation(confirmation1=True, confirmation2=True)
        )
        assert row.role == UserRole.AUDIT

    async def test_truthy_values_accepted(self, db, world):
        await prepare(db, world)
        row = await submit_final_certification(
            db, world.solo.category.id, world.auditor.id,
            {"confirmation1": "I confirm", "confirmation2": 1}
        )
        assert row.role == UserRole.AUDIT


class TestPrerequisites:

    async def test_tally_incomplete(self, db, world):
        solo = world.solo
        for judge in solo.judges:
            for contestant in solo.contestants:
                await record_judge_contestant_signoff(db, judge.id, contestant.id, solo.category.id)
        await record_role_signoff(db, solo.category.id, "TALLY", world.tally_users[0].id)

        with pytest.raises(ValidationError) as exc:
            await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)
        assert exc.value.code == "PREREQUISITE_NOT_MET"
        assert exc.value.details["tally_certifications"]["missing"] == 1

    async def test_uncertified_scores(self, db, world):
        solo = world.solo
        for user in world.tally_users:
            await record_role_signoff(db, solo.category.id, "TALLY", user.id)

        with pytest.raises(ValidationError) as exc:
            await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)
        assert exc.value.code == "SCORES_NOT_CERTIFIED"

    async def test_missing_category(self, db, world):
        with pytest.raises(NotFoundError):
            await submit_final_certification(db, 9999, world.auditor.id, CONFIRMED)


class TestAuditorOnly:

    @pytest.mark.parametrize("attr", ["board", "judge_user"])
    async def test_non_auditor_forbidden(self, db, world, attr):
        await prepare(db, world)
        user = getattr(world, attr)

        with pytest.raises(ForbiddenError) as exc:
            await submit_final_certification(db, world.solo.category.id, user.id, CONFIRMED)
        assert exc.value.status_code == 403

    async def test_unknown_user_forbidden(self, db, world):
        await prepare(db, world)
        with pytest.raises(ForbiddenError):
            await submit_final_certification(db, world.solo.category.id, 9999, CONFIRMED)

    async def test_tally_user_cannot_finalize(self, db, world):
        await prepare(db, world)
        with pytest.raises(ForbiddenError):
            await submit_final_certification(
                db, world.solo.category.id, world.tally_users[0].id, CONFIRMED
            )


class TestTerminalTransition:

    async def test_locks_and_certifies_every_score(self, db, world):
        solo = await prepare(db, world)

        row = await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)

        assert row.category_id == solo.category.id
        assert row.user_id == world.auditor.id
        flags = await score_flags(db, solo.category.id)
        assert flags and all(is_certified and is_locked for is_certified, is_locked, _, _ in flags)

    async def test_criterionless_scores_locked_too(self, db, world):
        solo = world.solo
        await add_score(db, solo.category, solo.judges[0], solo.contestants[0], criterion=None)
        await db.commit()
        await prepare(db, world)

        await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)

        rows = (await db.execute(
            select(Score.is_locked, Score.is_certified)
            .where(Score.category_id == solo.category.id, Score.criterion_id.is_(None))
        )).all()
        assert rows == [(True, True)]

    async def test_second_submit_conflicts(self, db, world):
        solo = await prepare(db, world)
        await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)

        with pytest.raises(ConflictError) as exc:
            await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)
        assert exc.value.status_code == 409
        assert exc.value.code == "ALREADY_CERTIFIED"

    async def test_concurrent_submits_certify_once(self, shared_sessions, monkeypatch):
        """Both submits pass the status check; the audit insert admits only one."""
        async with shared_sessions() as setup:
            world = await seed_world(setup)
            await setup.commit()
            await prepare(setup, world)
        category_id, auditor_id = world.solo.category.id, world.auditor.id

        gate = ArrivalGate(2)
        check_prerequisites = final_certification_service._check_prerequisites

        async def checked_then_held(db, category_id):
            status = await check_prerequisites(db, category_id)
            await gate.wait()
            return status

        monkeypatch.setattr(final_certification_service, "_check_prerequisites", checked_then_held)

        async def submit():
            async with shared_sessions() as session:
                try:
                    await submit_final_certification(session, category_id, auditor_id, CONFIRMED)
                except ConflictError as exc:
                    return exc.code
                return "ok"

        outcomes = await asyncio.gather(submit(), submit())

        assert gate.arrived == 2
        assert sorted(outcomes) == ["ALREADY_CERTIFIED", "ok"]
        async with shared_sessions() as session:
            audit_rows = (await session.execute(
                select(func.count(CategoryCertification.id)).where(
                    CategoryCertification.category_id == category_id,
                    CategoryCertification.role == UserRole.AUDIT,
                )
            )).scalar()
            flags = await score_flags(session, category_id)
        assert audit_rows == 1
        assert all(is_locked for _, is_locked, _, _ in flags)

    async def test_status_after_certification(self, db, world):
        solo = await prepare(db, world)
        await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)

        machine = CertificationStateMachine(db)
        status = await machine.final_certification_status(solo.category.id)
        view = await machine.workflow(solo.category.id)

        assert status["already_certified"] is True
        assert status["ready_for_final_certification"] is False
        assert status["audit_certification"]["user_id"] == world.auditor.id
        assert view["current_stage"] == "BOARD"
        assert view["overall_status"] == "AUDIT_CERTIFIED"
        assert view["scores_locked"] is True

        await record_role_signoff(db, solo.category.id, "BOARD", world.board.id)
        view = await machine.workflow(solo.category.id)
        assert view["current_stage"] == "LOCKED"
        assert view["current_step"] == 5
        assert view["overall_status"] == "APPROVED"

    async def test_notifies_after_commit(self, db, world, recorder):
        solo = await prepare(db, world)
        await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)

        channel, message = recorder.published[-1]
        assert channel == f"category:{solo.category.id}"
        assert message["new_stage"] == "BOARD"

    async def test_other_categories_untouched(self, db, world):
        solo = await prepare(db, world)
        await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)

        flags = await score_flags(db, world.duet.category.id)
        assert not any(is_locked for _, is_locked, _, _ in flags)


class TestScoreLockGuard:

    async def test_locked_score_rejected(self, db, world):
        solo = await prepare(db, world)
        await submit_final_certification(db, solo.category.id, world.auditor.id, CONFIRMED)

        score = (await db.execute(
            select(Score).where(Score.category_id == solo.category.id).limit(1)
        )).scalar_one()
        await db.refresh(score)

        with pytest.raises(ConflictError) as exc:
            prevent_score_modification(score)
        assert exc.value.code == "SCORE_LOCKED"

    async def test_unlocked_score_allowed(self, db, world):
        score = (await db.execute(
            select(Score).where(Score.category_id == world.solo.category.id).limit(1)
        )).scalar_one()

        prevent_score_modification(score)


class TestScenario:
    """
    2 judges x 3 contestants: judge stage completes on the sixth sign-off,
    two tally sign-offs open the gate, the auditor locks, a repeat conflicts.
    """

    async def test_end_to_end(self, db, world):
        solo = world.solo
        category_id = solo.category.id
        pairs = [(j, c) for j in solo.judges for c in solo.contestants]

        for judge, contestant in pairs[:5]:
            await record_judge_contestant_signoff(db, judge.id, contestant.id, category_id)
        progress = await certification_progress(db, category_id)
        assert progress["judge_progress"]["contestants_certified"] == 5
        assert progress["judge_progress"]["is_category_certified"] is False

        judge, contestant = pairs[5]
        await record_judge_contestant_signoff(db, judge.id, contestant.id, category_id)
        progress = await certification_progress(db, category_id)
        assert progress["judge_progress"]["is_category_certified"] is True

        for user in world.tally_users:
            await record_role_signoff(db, category_id, "TALLY", user.id)
        status = await CertificationStateMachine(db).final_certification_status(category_id)
        assert status["can_certify"] is True
        assert status["score_status"]["uncertified"] == 0

        await submit_final_certification(db, category_id, world.auditor.id, CONFIRMED)
        flags = await score_flags(db, category_id)
        assert len(flags) == 6
        assert all(is_certified and is_locked for is_certified, is_locked, _, _ in flags)

        with pytest.raises(ConflictError):
            await submit_final_certification(db, category_id, world.auditor.id, CONFIRMED)
