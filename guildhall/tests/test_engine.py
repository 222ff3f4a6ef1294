import datetime
from concurrent.futures import ThreadPoolExecutor

import pytest

from guildhall.errors import (AlreadyAcceptedError, AlreadyApprovedError,
                              AlreadyClaimedError, AlreadyRequestedError,
                              AlreadySubmittedError, CannotUnlockError,
                              ExclusiveCodeRequiredError,
                              FeedbackRequiredError, InvalidCodeError,
                              InvalidStateError, NotAuthorizedError,
                              NotAvailableError, QuestInactiveError,
                              ValidationError)
from guildhall.notifications.utils import Notifier
from guildhall.Progression.engine import QuestProgression
from guildhall.settings import store
from guildhall.store import user_objective_key, user_quest_key
from guildhall.User.utils import load_principal

EVIDENCE = "Cleared every barrel in the cellar"
FEEDBACK = "Please include a screenshot of the empty cellar"


def row_id(user_quest, objective):
    return user_objective_key(user_quest["id"], objective["id"])


def status_of(user_objective_id):
    return store.get_user_objective(user_objective_id)["status"]


def approve(engine, gm, user_quest, objective):
    """Submit evidence as the quest owner and have the GM approve it."""
    uo_id = row_id(user_quest, objective)
    engine.submit_evidence(load_principal(user_quest["user_id"]), uo_id, text=EVIDENCE)
    return engine.review_submission(gm, uo_id, "approve")


@pytest.fixture
def chained_quest(make_quest):
    return make_quest(
        objectives=[
            {"title": "Find the rats", "points": 50},
            {"title": "Report to the innkeeper", "points": 50, "depends_on": 0},
        ],
        points=100,
    )


class TestAcceptQuest:
    def test_accept_seeds_objectives(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        o1, o2 = chained_quest["objectives"]

        assert user_quest["id"] == user_quest_key(adventurer.id, chained_quest["id"])
        assert user_quest["status"] == "accepted"
        assert status_of(row_id(user_quest, o1)) == "available"
        assert status_of(row_id(user_quest, o2)) == "locked"

    def test_accept_twice(self, engine, adventurer, chained_quest):
        engine.accept_quest(adventurer, chained_quest["id"])
        with pytest.raises(AlreadyAcceptedError):
            engine.accept_quest(adventurer, chained_quest["id"])
        assert len(store.list_user_quests(user_id=adventurer.id)) == 1

    def test_accept_after_abandon_reuses_row(self, engine, adventurer, chained_quest):
        first = engine.accept_quest(adventurer, chained_quest["id"])
        o1 = chained_quest["objectives"][0]
        engine.submit_evidence(adventurer, row_id(first, o1), text=EVIDENCE)
        engine.abandon_quest(adventurer, first["id"])

        second = engine.accept_quest(adventurer, chained_quest["id"])
        assert second["id"] == first["id"]
        assert second["status"] == "accepted"
        assert second["abandoned_at"] is None
        assert status_of(row_id(second, o1)) == "available"
        assert store.get_user_objective(row_id(second, o1))["evidence_text"] is None

    def test_accept_completed_quest(self, engine, adventurer, gm, make_quest):
        quest = make_quest()
        user_quest = engine.accept_quest(adventurer, quest["id"])
        approve(engine, gm, user_quest, quest["objectives"][0])
        engine.claim_quest_reward(adventurer, user_quest["id"])

        with pytest.raises(AlreadyAcceptedError):
            engine.accept_quest(adventurer, quest["id"])

    def test_accept_draft_quest(self, engine, adventurer, make_quest):
        quest = make_quest(publish=False)
        with pytest.raises(InvalidStateError):
            engine.accept_quest(adventurer, quest["id"])

    def test_accept_after_acceptance_deadline(self, engine, clock, adventurer, make_quest):
        quest = make_quest(acceptance_deadline=clock.now - datetime.timedelta(days=1))
        with pytest.raises(ValidationError):
            engine.accept_quest(adventurer, quest["id"])

    def test_exclusive_quest_codes(self, engine, adventurer, make_quest):
        quest = make_quest(is_exclusive=True, exclusive_code="DRAGON")
        with pytest.raises(ExclusiveCodeRequiredError):
            engine.accept_quest(adventurer, quest["id"])
        with pytest.raises(InvalidCodeError):
            engine.accept_quest(adventurer, quest["id"], "GOBLIN")

        user_quest = engine.accept_quest(adventurer, quest["id"], " DRAGON ")
        assert user_quest["status"] == "accepted"

    def test_deadline_from_completion_days(self, engine, clock, adventurer, make_quest):
        quest = make_quest(completion_days=3)
        user_quest = engine.accept_quest(adventurer, quest["id"])
        assert user_quest["deadline"] == clock.now + datetime.timedelta(days=3)

    def test_accept_notifies_game_masters(self, engine, adventurer, gm, make_quest):
        quest = make_quest()
        engine.accept_quest(adventurer, quest["id"])
        notifications = store.list_notifications(gm.id)
        assert [n["type"] for n in notifications] == ["quest_accepted"]


class TestEvidence:
    def test_submit_starts_quest(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        uo_id = row_id(user_quest, chained_quest["objectives"][0])

        user_objective = engine.submit_evidence(adventurer, uo_id, text=EVIDENCE)
        assert user_objective["status"] == "submitted"
        assert user_objective["evidence_text"] == EVIDENCE
        assert user_objective["submitted_at"] is not None
        assert store.get_user_quest(user_quest["id"])["status"] == "in_progress"

    def test_submit_locked_objective(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        with pytest.raises(NotAvailableError):
            engine.submit_evidence(adventurer, row_id(user_quest, chained_quest["objectives"][1]), text=EVIDENCE)

    def test_submit_twice(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        uo_id = row_id(user_quest, chained_quest["objectives"][0])
        engine.submit_evidence(adventurer, uo_id, text=EVIDENCE)
        with pytest.raises(AlreadySubmittedError):
            engine.submit_evidence(adventurer, uo_id, text=EVIDENCE)

    def test_submit_for_someone_else(self, engine, adventurer, make_user, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        bob = make_user("bob")
        with pytest.raises(NotAuthorizedError):
            engine.submit_evidence(bob, row_id(user_quest, chained_quest["objectives"][0]), text=EVIDENCE)

    @pytest.mark.parametrize(
        "text, url",
        [
            (None, None),
            ("too short", None),
            ("x" * 2001, None),
            (None, "not a url"),
        ],
    )
    def test_invalid_evidence(self, engine, adventurer, chained_quest, text, url):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        uo_id = row_id(user_quest, chained_quest["objectives"][0])
        with pytest.raises(ValidationError):
            engine.submit_evidence(adventurer, uo_id, text=text, url=url)
        assert status_of(uo_id) == "available"

    def test_evidence_type_restrictions(self, engine, adventurer, make_quest):
        quest = make_quest(objectives=[
            {"title": "Write a report", "evidence_type": "text"},
            {"title": "Share the map", "evidence_type": "link"},
        ])
        user_quest = engine.accept_quest(adventurer, quest["id"])
        text_row = row_id(user_quest, quest["objectives"][0])
        link_row = row_id(user_quest, quest["objectives"][1])

        with pytest.raises(ValidationError):
            engine.submit_evidence(adventurer, text_row, url="https://maps.example.com/cellar")
        with pytest.raises(ValidationError):
            engine.submit_evidence(adventurer, link_row, text=EVIDENCE)

        assert engine.submit_evidence(adventurer, text_row, text=EVIDENCE)["status"] == "submitted"
        assert engine.submit_evidence(adventurer, link_row, url="https://maps.example.com/cellar")["status"] == "submitted"

    def test_mark_complete_without_evidence(self, engine, adventurer, make_quest):
        quest = make_quest(objectives=[{"title": "Visit the guild hall", "evidence_required": False}])
        user_quest = engine.accept_quest(adventurer, quest["id"])
        uo_id = row_id(user_quest, quest["objectives"][0])

        with pytest.raises(ValidationError):
            engine.submit_evidence(adventurer, uo_id, text=EVIDENCE)

        assert engine.mark_objective_complete(adventurer, uo_id)["status"] == "approved"
        assert store.get_user_quest(user_quest["id"])["status"] == "ready_to_claim"

    def test_mark_complete_requires_evidence(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        with pytest.raises(ValidationError):
            engine.mark_objective_complete(adventurer, row_id(user_quest, chained_quest["objectives"][0]))

    def test_submit_on_abandoned_quest(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        engine.abandon_quest(adventurer, user_quest["id"])
        with pytest.raises(QuestInactiveError):
            engine.submit_evidence(adventurer, row_id(user_quest, chained_quest["objectives"][0]), text=EVIDENCE)


class TestReview:
    def test_only_game_masters_review(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        uo_id = row_id(user_quest, chained_quest["objectives"][0])
        engine.submit_evidence(adventurer, uo_id, text=EVIDENCE)
        with pytest.raises(NotAuthorizedError):
            engine.review_submission(adventurer, uo_id, "approve")

    def test_reject_resets_to_available(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        uo_id = row_id(user_quest, chained_quest["objectives"][0])
        engine.submit_evidence(adventurer, uo_id, text=EVIDENCE)

        rejected = engine.review_submission(gm, uo_id, "reject", FEEDBACK)
        assert rejected["status"] == "available"
        assert rejected["feedback"] == FEEDBACK
        assert rejected["reviewed_by"] == gm.id
        assert rejected["evidence_text"] is None

        resubmitted = engine.submit_evidence(adventurer, uo_id, text=EVIDENCE + " and the attic")
        assert resubmitted["status"] == "submitted"

        types = [n["type"] for n in store.list_notifications(adventurer.id)]
        assert "evidence_rejected" in types

    @pytest.mark.parametrize("feedback", [None, "", "too short"])
    def test_reject_needs_feedback(self, engine, adventurer, gm, chained_quest, feedback):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        uo_id = row_id(user_quest, chained_quest["objectives"][0])
        engine.submit_evidence(adventurer, uo_id, text=EVIDENCE)
        with pytest.raises(FeedbackRequiredError):
            engine.review_submission(gm, uo_id, "reject", feedback)
        assert status_of(uo_id) == "submitted"

    def test_review_unknown_decision(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        uo_id = row_id(user_quest, chained_quest["objectives"][0])
        with pytest.raises(ValidationError):
            engine.review_submission(gm, uo_id, "maybe")

    def test_review_twice(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        approve(engine, gm, user_quest, chained_quest["objectives"][0])
        with pytest.raises(AlreadyApprovedError):
            engine.review_submission(gm, row_id(user_quest, chained_quest["objectives"][0]), "approve")

    def test_review_unsubmitted(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        with pytest.raises(InvalidStateError):
            engine.review_submission(gm, row_id(user_quest, chained_quest["objectives"][0]), "approve")


class TestUnlock:
    def test_approval_unlocks_dependent(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        o1, o2 = chained_quest["objectives"]
        approve(engine, gm, user_quest, o1)
        assert status_of(row_id(user_quest, o2)) == "available"

    def test_unlock_is_never_reverted(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        o1, o2 = chained_quest["objectives"]
        approve(engine, gm, user_quest, o1)

        engine.uncheck_objective(adventurer, row_id(user_quest, o1))
        assert status_of(row_id(user_quest, o1)) == "available"
        assert status_of(row_id(user_quest, o2)) == "available"

        engine.submit_evidence(adventurer, row_id(user_quest, o1), text=EVIDENCE)
        engine.review_submission(gm, row_id(user_quest, o1), "reject", FEEDBACK)
        assert status_of(row_id(user_quest, o2)) == "available"

    def test_reconcile_locks(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        o1, o2 = chained_quest["objectives"]
        # approved behind the engine's back, e.g. a row written by an older client
        store.update_user_objective(row_id(user_quest, o1), {"status": "approved"})

        rows = {row["objective_id"]: row for row in engine.reconcile_locks(user_quest["id"])}
        assert rows[o2["id"]]["status"] == "available"

    def test_uncheck_locked(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        with pytest.raises(CannotUnlockError):
            engine.uncheck_objective(adventurer, row_id(user_quest, chained_quest["objectives"][1]))


class TestClaim:
    def test_two_objective_scenario(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        o1, o2 = chained_quest["objectives"]

        engine.submit_evidence(adventurer, row_id(user_quest, o1), text=EVIDENCE)
        assert store.get_user_quest(user_quest["id"])["status"] == "in_progress"
        engine.review_submission(gm, row_id(user_quest, o1), "approve")
        assert status_of(row_id(user_quest, o2)) == "available"

        engine.submit_evidence(adventurer, row_id(user_quest, o2), text=EVIDENCE)
        engine.review_submission(gm, row_id(user_quest, o2), "approve")
        assert store.get_user_quest(user_quest["id"])["status"] == "ready_to_claim"

        result = engine.claim_quest_reward(adventurer, user_quest["id"])
        assert result == {"user_quest_id": user_quest["id"], "status": "completed", "points_awarded": 100}

        user = store.get_user(adventurer.id)
        assert user["total_points"] == 100
        assert user["quests_completed"] == 1
        assert store.get_user_quest(user_quest["id"])["completed_at"] is not None

    def test_claim_before_all_approved(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        approve(engine, gm, user_quest, chained_quest["objectives"][0])
        with pytest.raises(InvalidStateError):
            engine.claim_quest_reward(adventurer, user_quest["id"])
        assert store.get_user(adventurer.id)["total_points"] == 0

    def test_claim_twice(self, engine, adventurer, gm, make_quest):
        quest = make_quest()
        user_quest = engine.accept_quest(adventurer, quest["id"])
        approve(engine, gm, user_quest, quest["objectives"][0])
        engine.claim_quest_reward(adventurer, user_quest["id"])

        with pytest.raises(AlreadyClaimedError):
            engine.claim_quest_reward(adventurer, user_quest["id"])
        assert store.get_user(adventurer.id)["total_points"] == 100

    def test_concurrent_claims_award_once(self, engine, adventurer, gm, make_quest):
        quest = make_quest()
        user_quest = engine.accept_quest(adventurer, quest["id"])
        approve(engine, gm, user_quest, quest["objectives"][0])

        def claim(_):
            try:
                return engine.claim_quest_reward(adventurer, user_quest["id"])
            except AlreadyClaimedError:
                return None

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(claim, range(16)))

        assert len([r for r in results if r is not None]) == 1
        user = store.get_user(adventurer.id)
        assert user["total_points"] == 100
        assert user["quests_completed"] == 1

    def test_claim_someone_elses_quest(self, engine, adventurer, gm, make_user, make_quest):
        quest = make_quest()
        user_quest = engine.accept_quest(adventurer, quest["id"])
        approve(engine, gm, user_quest, quest["objectives"][0])
        with pytest.raises(NotAuthorizedError):
            engine.claim_quest_reward(make_user("bob"), user_quest["id"])

    def test_uncheck_demotes_ready_quest(self, engine, adventurer, gm, make_quest):
        quest = make_quest()
        user_quest = engine.accept_quest(adventurer, quest["id"])
        approve(engine, gm, user_quest, quest["objectives"][0])
        assert store.get_user_quest(user_quest["id"])["status"] == "ready_to_claim"

        engine.uncheck_objective(adventurer, row_id(user_quest, quest["objectives"][0]))
        demoted = store.get_user_quest(user_quest["id"])
        assert demoted["status"] == "in_progress"
        assert demoted["ready_to_claim_at"] is None


class TestFinalApproval:
    @pytest.fixture
    def awaiting(self, engine, adventurer, gm, make_quest):
        quest = make_quest(requires_final_approval=True, points=250)
        user_quest = engine.accept_quest(adventurer, quest["id"])
        approve(engine, gm, user_quest, quest["objectives"][0])
        result = engine.claim_quest_reward(adventurer, user_quest["id"])
        assert result["status"] == "awaiting_final_approval"
        assert result["points_awarded"] == 0
        return user_quest

    def test_claim_waits_for_game_master(self, engine, adventurer, awaiting):
        assert store.get_user(adventurer.id)["total_points"] == 0
        with pytest.raises(AlreadyClaimedError):
            engine.claim_quest_reward(adventurer, awaiting["id"])

    def test_final_approve_awards_once(self, engine, adventurer, gm, awaiting):
        result = engine.gm_review_quest_completion(gm, awaiting["id"], True, "Well done, adventurer")
        assert result["status"] == "completed"
        assert result["points_awarded"] == 250
        assert store.get_user(adventurer.id)["total_points"] == 250

        with pytest.raises(AlreadyClaimedError):
            engine.gm_review_quest_completion(gm, awaiting["id"], True)
        assert store.get_user(adventurer.id)["total_points"] == 250

    def test_final_reject_returns_to_progress(self, engine, adventurer, gm, awaiting):
        result = engine.gm_review_quest_completion(gm, awaiting["id"], False, "The innkeeper disagrees")
        assert result["status"] == "in_progress"
        assert store.get_user_quest(awaiting["id"])["final_feedback"] == "The innkeeper disagrees"
        assert store.get_user(adventurer.id)["total_points"] == 0
        types = [n["type"] for n in store.list_notifications(adventurer.id)]
        assert "quest_completion_rejected" in types

    def test_final_review_requires_game_master(self, engine, adventurer, awaiting):
        with pytest.raises(NotAuthorizedError):
            engine.gm_review_quest_completion(adventurer, awaiting["id"], True)

    def test_global_default(self, adventurer, gm, make_quest, clock):
        strict = QuestProgression(store, Notifier(store), clock=clock, require_final_approval=True)
        quest = make_quest()
        user_quest = strict.accept_quest(adventurer, quest["id"])
        approve(strict, gm, user_quest, quest["objectives"][0])
        assert strict.claim_quest_reward(adventurer, user_quest["id"])["status"] == "awaiting_final_approval"


class TestAbandon:
    def test_abandon(self, engine, adventurer, gm, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        abandoned = engine.abandon_quest(adventurer, user_quest["id"])
        assert abandoned["status"] == "abandoned"
        assert abandoned["abandoned_at"] is not None
        assert "quest_abandoned" in [n["type"] for n in store.list_notifications(gm.id)]

    def test_abandon_ready_quest(self, engine, adventurer, gm, make_quest):
        quest = make_quest()
        user_quest = engine.accept_quest(adventurer, quest["id"])
        approve(engine, gm, user_quest, quest["objectives"][0])
        with pytest.raises(InvalidStateError):
            engine.abandon_quest(adventurer, user_quest["id"])

    def test_abandon_someone_elses_quest(self, engine, adventurer, make_user, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        with pytest.raises(NotAuthorizedError):
            engine.abandon_quest(make_user("bob"), user_quest["id"])


class TestExtensions:
    @pytest.fixture
    def timed(self, engine, adventurer, make_quest):
        quest = make_quest(completion_days=2)
        return engine.accept_quest(adventurer, quest["id"])

    def test_reason_length(self, engine, adventurer, timed):
        with pytest.raises(ValidationError):
            engine.request_extension(adventurer, timed["id"], "too busy")

        user_quest = engine.request_extension(adventurer, timed["id"], "too busy!!")
        assert user_quest["extension_requested"] is True
        assert user_quest["extension_reason"] == "too busy!!"
        assert user_quest["extension_granted"] is None

    def test_request_twice(self, engine, adventurer, timed):
        engine.request_extension(adventurer, timed["id"], "The dragon ate my map")
        with pytest.raises(AlreadyRequestedError):
            engine.request_extension(adventurer, timed["id"], "The dragon ate my map again")

    def test_request_without_deadline(self, engine, adventurer, chained_quest):
        user_quest = engine.accept_quest(adventurer, chained_quest["id"])
        with pytest.raises(ValidationError):
            engine.request_extension(adventurer, user_quest["id"], "The dragon ate my map")

    def test_approve_extension(self, engine, clock, adventurer, gm, timed):
        engine.request_extension(adventurer, timed["id"], "The dragon ate my map")
        new_deadline = clock.now + datetime.timedelta(days=5)

        user_quest = engine.decide_extension(gm, timed["id"], True, new_deadline)
        assert user_quest["extension_granted"] is True
        assert user_quest["deadline"] == new_deadline
        assert user_quest["extended_deadline"] == new_deadline
        assert user_quest["extension_decided_by"] == gm.id
        assert "extension_approved" in [n["type"] for n in store.list_notifications(adventurer.id)]

    def test_deny_extension(self, engine, adventurer, gm, timed):
        engine.request_extension(adventurer, timed["id"], "The dragon ate my map")
        user_quest = engine.decide_extension(gm, timed["id"], False)
        assert user_quest["extension_granted"] is False
        assert user_quest["deadline"] == timed["deadline"]

        with pytest.raises(InvalidStateError):
            engine.decide_extension(gm, timed["id"], True, timed["deadline"] + datetime.timedelta(days=1))

    def test_decide_without_request(self, engine, clock, gm, timed):
        with pytest.raises(InvalidStateError):
            engine.decide_extension(gm, timed["id"], True, clock.now + datetime.timedelta(days=5))

    def test_approve_needs_future_deadline(self, engine, clock, adventurer, gm, timed):
        engine.request_extension(adventurer, timed["id"], "The dragon ate my map")
        with pytest.raises(ValidationError):
            engine.decide_extension(gm, timed["id"], True)
        with pytest.raises(ValidationError):
            engine.decide_extension(gm, timed["id"], True, clock.now - datetime.timedelta(hours=1))

    def test_decide_requires_game_master(self, engine, clock, adventurer, timed):
        engine.request_extension(adventurer, timed["id"], "The dragon ate my map")
        with pytest.raises(NotAuthorizedError):
            engine.decide_extension(adventurer, timed["id"], True, clock.now + datetime.timedelta(days=5))


class TestDeadlines:
    @pytest.fixture
    def timed(self, engine, adventurer, make_quest):
        quest = make_quest(completion_days=1)
        return engine.accept_quest(adventurer, quest["id"])

    def test_reminder_sent_once(self, engine, clock, adventurer, timed):
        clock.advance(hours=2)
        assert engine.expire_overdue_quests() == {"expired": 0, "reminded": 1}
        assert engine.expire_overdue_quests() == {"expired": 0, "reminded": 0}
        types = [n["type"] for n in store.list_notifications(adventurer.id)]
        assert types.count("deadline_approaching") == 1

    def test_overdue_quest_expires(self, engine, clock, adventurer, timed):
        clock.advance(days=1, minutes=1)
        assert engine.expire_overdue_quests()["expired"] == 1

        expired = store.get_user_quest(timed["id"])
        assert expired["status"] == "expired"
        assert expired["expired_at"] == clock.now

    def test_expired_quest_is_inactive(self, engine, clock, adventurer, timed):
        clock.advance(days=2)
        engine.expire_overdue_quests()
        objective_id = store.list_user_objectives(user_quest_id=timed["id"])[0]["id"]
        with pytest.raises(QuestInactiveError):
            engine.submit_evidence(adventurer, objective_id, text=EVIDENCE)

    def test_extension_revives_expired_quest(self, engine, clock, adventurer, gm, timed):
        clock.advance(days=2)
        engine.expire_overdue_quests()
        engine.request_extension(adventurer, timed["id"], "I was trapped in a dungeon")

        revived = engine.decide_extension(gm, timed["id"], True, clock.now + datetime.timedelta(days=3))
        assert revived["status"] == "in_progress"
        assert revived["expired_at"] is None

    def test_expired_quest_can_be_accepted_again(self, engine, clock, adventurer, timed):
        clock.advance(days=2)
        engine.expire_overdue_quests()
        again = engine.accept_quest(adventurer, timed["quest_id"])
        assert again["id"] == timed["id"]
        assert again["status"] == "accepted"
        assert again["deadline"] == clock.now + datetime.timedelta(days=1)
