"""
Quest progression engine.

Every status change of a user quest or a user objective goes through this
module. The allowed transitions live in two tables below; each named
operation validates its inputs, checks ownership or the GM capability,
derives the precondition error from the current status and then asks the
store for a conditional write against the same table, so a concurrent change
between the read and the write surfaces as the same error instead of
corrupting the row.

Dependents are unlocked whenever a prerequisite reaches ``approved`` and are
never locked again afterwards, even if the prerequisite is later rejected or
unchecked. Points are only credited when a quest is completed, inside the
store's ``award_completion`` transaction.
"""

import datetime
import logging
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import (AlreadyAcceptedError, AlreadyApprovedError,
                      AlreadyClaimedError, AlreadyRequestedError,
                      AlreadySubmittedError, CannotUnlockError,
                      ExclusiveCodeRequiredError, FeedbackRequiredError,
                      InvalidCodeError, InvalidStateError, NotAuthorizedError,
                      NotAvailableError, NotFoundError, QuestInactiveError,
                      StaleStateError, ValidationError)
from ..notifications.models import NotificationType, ReferenceType
from ..store import user_objective_key, user_quest_key
from ..User.models import Principal
from .models import (EvidenceType, ReviewDecision, UserObjectiveStatus,
                     UserQuestStatus)

QS = UserQuestStatus
OS = UserObjectiveStatus

EVIDENCE_TEXT_MIN = 10
EVIDENCE_TEXT_MAX = 2000
FEEDBACK_MIN = 10
FEEDBACK_MAX = 500
REASON_MIN = 10
REASON_MAX = 500
DEADLINE_REMINDER_WINDOW = datetime.timedelta(hours=24)

_url_adapter = TypeAdapter(HttpUrl)


def _values(*statuses) -> frozenset:
    return frozenset(s.value for s in statuses)


# action: (allowed current statuses, target status)
USER_QUEST_TRANSITIONS = {
    "accept": (_values(QS.ABANDONED, QS.EXPIRED), QS.ACCEPTED),
    "start": (_values(QS.ACCEPTED), QS.IN_PROGRESS),
    "ready": (_values(QS.ACCEPTED, QS.IN_PROGRESS), QS.READY_TO_CLAIM),
    "request_final_approval": (_values(QS.ACCEPTED, QS.IN_PROGRESS, QS.READY_TO_CLAIM), QS.AWAITING_FINAL_APPROVAL),
    "complete": (_values(QS.ACCEPTED, QS.IN_PROGRESS, QS.READY_TO_CLAIM), QS.COMPLETED),
    "final_approve": (_values(QS.AWAITING_FINAL_APPROVAL), QS.COMPLETED),
    "final_reject": (_values(QS.AWAITING_FINAL_APPROVAL), QS.IN_PROGRESS),
    "demote": (_values(QS.READY_TO_CLAIM, QS.AWAITING_FINAL_APPROVAL), QS.IN_PROGRESS),
    "abandon": (_values(QS.ACCEPTED, QS.IN_PROGRESS), QS.ABANDONED),
    "expire": (_values(QS.ACCEPTED, QS.IN_PROGRESS), QS.EXPIRED),
    "revive": (_values(QS.EXPIRED), QS.IN_PROGRESS),
}

USER_OBJECTIVE_TRANSITIONS = {
    "submit": (_values(OS.AVAILABLE), OS.SUBMITTED),
    "mark_complete": (_values(OS.AVAILABLE), OS.APPROVED),
    "approve": (_values(OS.SUBMITTED), OS.APPROVED),
    "reject": (_values(OS.SUBMITTED), OS.AVAILABLE),
    "unlock": (_values(OS.LOCKED), OS.AVAILABLE),
    "uncheck": (_values(OS.AVAILABLE, OS.SUBMITTED, OS.APPROVED, OS.REJECTED), OS.AVAILABLE),
}

TERMINAL_QUEST_STATUSES = _values(QS.COMPLETED, QS.ABANDONED, QS.EXPIRED)
REUSABLE_QUEST_STATUSES = _values(QS.ABANDONED, QS.EXPIRED)
CLAIMED_QUEST_STATUSES = _values(QS.COMPLETED, QS.AWAITING_FINAL_APPROVAL)

_CLEARED_EVIDENCE = {
    "evidence_text": None,
    "evidence_url": None,
    "submitted_at": None,
}
_CLEARED_REVIEW = {
    "reviewed_by": None,
    "reviewed_at": None,
    "feedback": None,
}


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_aware(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


# precondition errors, derived from the current status
def _submit_error(status: str) -> InvalidStateError:
    if status == OS.LOCKED.value:
        return NotAvailableError()
    if status == OS.APPROVED.value:
        return AlreadyApprovedError()
    if status == OS.SUBMITTED.value:
        return AlreadySubmittedError()
    return InvalidStateError("This objective is not available for completion")


def _review_error(status: str) -> InvalidStateError:
    if status == OS.APPROVED.value:
        return AlreadyApprovedError()
    return InvalidStateError("Only submitted evidence can be reviewed")


def _claim_error(status: str) -> InvalidStateError:
    if status == QS.COMPLETED.value:
        return AlreadyClaimedError()
    if status == QS.AWAITING_FINAL_APPROVAL.value:
        return AlreadyClaimedError("The reward has already been claimed and is awaiting final approval")
    if status in TERMINAL_QUEST_STATUSES:
        return QuestInactiveError("This quest is no longer active")
    return InvalidStateError("All objectives must be approved before claiming the reward")


def _final_review_error(status: str) -> InvalidStateError:
    if status == QS.COMPLETED.value:
        return AlreadyClaimedError()
    return InvalidStateError("This quest is not awaiting final approval")


def _abandon_error(status: str) -> InvalidStateError:
    return InvalidStateError("This quest cannot be abandoned in its current state")


class QuestProgression:
    def __init__(self, store, notifier=None, clock: Callable[[], datetime.datetime] = utcnow,
                 require_final_approval: bool = False):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.require_final_approval = require_final_approval

    # loading and guards
    def _now(self) -> datetime.datetime:
        return _as_aware(self.clock())

    @staticmethod
    def _require_gm(principal: Principal, message: str):
        if not principal.is_gm:
            raise NotAuthorizedError(message)

    def _get_quest(self, quest_id: str) -> dict:
        quest = self.store.get_quest(quest_id)
        if quest is None:
            raise NotFoundError("Quest not found")
        return quest

    def _get_user_quest(self, user_quest_id: str) -> dict:
        user_quest = self.store.get_user_quest(user_quest_id)
        if user_quest is None:
            raise NotFoundError("Quest not found")
        return user_quest

    def _get_owned_user_quest(self, principal: Principal, user_quest_id: str, message: str) -> dict:
        user_quest = self._get_user_quest(user_quest_id)
        if user_quest["user_id"] != principal.id:
            raise NotAuthorizedError(message)
        return user_quest

    def _get_user_objective(self, user_objective_id: str):
        user_objective = self.store.get_user_objective(user_objective_id)
        if user_objective is None:
            raise NotFoundError("Objective not found")
        user_quest = self._get_user_quest(user_objective["user_quest_id"])
        objective = self.store.get_objective(user_objective["objective_id"]) or {}
        return user_objective, user_quest, objective

    def _get_owned_user_objective(self, principal: Principal, user_objective_id: str, message: str):
        user_objective, user_quest, objective = self._get_user_objective(user_objective_id)
        if user_quest["user_id"] != principal.id:
            raise NotAuthorizedError(message)
        return user_objective, user_quest, objective

    # conditional writes through the transition tables
    def _move_quest(self, user_quest: dict, action: str, changes: dict = None,
                    error: Callable[[str], Exception] = None) -> dict:
        allowed, target = USER_QUEST_TRANSITIONS[action]
        payload = {"status": target.value, "updated_at": self._now()}
        payload.update(changes or {})
        try:
            updated = self.store.update_user_quest(user_quest["id"], payload, expected_status=allowed)
        except StaleStateError as e:
            if error is None:
                raise InvalidStateError() from e
            raise error(e.current_status) from e
        logging.info(f"user quest {user_quest['id']}: {user_quest.get('status')} -> {target.value} ({action})")
        return updated

    def _move_objective(self, user_objective: dict, action: str, changes: dict = None,
                        error: Callable[[str], Exception] = None) -> dict:
        allowed, target = USER_OBJECTIVE_TRANSITIONS[action]
        payload = {"status": target.value, "updated_at": self._now()}
        payload.update(changes or {})
        try:
            updated = self.store.update_user_objective(user_objective["id"], payload, expected_status=allowed)
        except StaleStateError as e:
            if error is None:
                raise InvalidStateError() from e
            raise error(e.current_status) from e
        logging.info(f"user objective {user_objective['id']}: {user_objective.get('status')} -> {target.value} ({action})")
        return updated

    def _try_move_quest(self, user_quest: dict, action: str, changes: dict = None) -> Optional[dict]:
        """Follow-up transition that another request may already have made."""
        try:
            return self._move_quest(user_quest, action, changes)
        except InvalidStateError:
            logging.debug(f"user quest {user_quest['id']} skipped {action}")
            return None

    def _notify(self, user_id: str, notif_type: NotificationType, params: Iterable = (),
                reference_type: ReferenceType = None, reference_id: str = None):
        if self.notifier is None:
            return
        try:
            self.notifier.notify(user_id, notif_type, params, reference_type, reference_id)
        except Exception as e:
            # the transition is already committed
            logging.error(f"Error notifying {user_id} of {notif_type.value}: {e}")

    def _notify_gms(self, notif_type: NotificationType, params: Iterable = (),
                    reference_type: ReferenceType = None, reference_id: str = None):
        if self.notifier is None:
            return
        try:
            self.notifier.notify_gms(notif_type, params, reference_type, reference_id)
        except Exception as e:
            logging.error(f"Error notifying game masters of {notif_type.value}: {e}")

    # 4.1 acceptance
    def accept_quest(self, principal: Principal, quest_id: str, exclusive_code: str = None) -> dict:
        quest = self._get_quest(quest_id)
        if quest.get("status") != "published":
            raise InvalidStateError("Quest is not available")

        now = self._now()
        acceptance_deadline = _as_aware(quest.get("acceptance_deadline"))
        if acceptance_deadline is not None and acceptance_deadline < now:
            raise ValidationError("This quest is no longer accepting new adventurers")

        if quest.get("is_exclusive"):
            if not exclusive_code:
                raise ExclusiveCodeRequiredError()
            if exclusive_code.strip() != (quest.get("exclusive_code") or ""):
                raise InvalidCodeError()

        deadline = None
        if quest.get("completion_days"):
            deadline = now + datetime.timedelta(days=quest["completion_days"])

        fields = {
            "accepted_at": now,
            "started_at": None,
            "ready_to_claim_at": None,
            "completed_at": None,
            "abandoned_at": None,
            "expired_at": None,
            "deadline": deadline,
            "deadline_notified": False,
            "extension_requested": False,
            "extension_reason": None,
            "extension_requested_at": None,
            "extension_granted": None,
            "extension_decided_by": None,
            "extension_decided_at": None,
            "extended_deadline": None,
            "final_reviewed_by": None,
            "final_reviewed_at": None,
            "final_feedback": None,
            "points_awarded": None,
        }

        key = user_quest_key(principal.id, quest_id)
        existing = self.store.get_user_quest(key)
        if existing is not None:
            if existing["status"] == QS.COMPLETED.value:
                raise AlreadyAcceptedError("You have already completed this quest")
            if existing["status"] not in REUSABLE_QUEST_STATUSES:
                raise AlreadyAcceptedError()
            user_quest = self._move_quest(existing, "accept", fields, error=lambda status: AlreadyAcceptedError())
        else:
            data = {
                "user_id": principal.id,
                "quest_id": quest_id,
                "status": QS.ACCEPTED.value,
                "updated_at": now,
            }
            data.update(fields)
            try:
                user_quest = self.store.create_user_quest(key, data)
            except StaleStateError as e:
                raise AlreadyAcceptedError() from e

        self._seed_objectives(user_quest, self.store.list_objectives(quest_id), now)
        logging.info(f"{principal.id} accepted quest {quest_id}")
        self._notify_gms(NotificationType.QUEST_ACCEPTED, [principal.display, quest.get("title")],
                         ReferenceType.USER_QUEST, user_quest["id"])
        return user_quest

    def _seed_objectives(self, user_quest: dict, objectives: List[dict], now: datetime.datetime):
        for objective in objectives:
            status = OS.LOCKED if objective.get("depends_on_id") else OS.AVAILABLE
            self.store.put_user_objective(
                user_objective_key(user_quest["id"], objective["id"]),
                {
                    "user_quest_id": user_quest["id"],
                    "user_id": user_quest["user_id"],
                    "quest_id": user_quest["quest_id"],
                    "objective_id": objective["id"],
                    "depends_on_id": objective.get("depends_on_id"),
                    "status": status.value,
                    "updated_at": now,
                    **_CLEARED_EVIDENCE,
                    **_CLEARED_REVIEW,
                },
            )

    # 4.2 evidence submission
    def submit_evidence(self, principal: Principal, user_objective_id: str, text: str = None, url: str = None) -> dict:
        user_objective, user_quest, objective = self._get_owned_user_objective(
            principal, user_objective_id, "You do not have permission to submit evidence for this objective"
        )
        if user_quest["status"] in TERMINAL_QUEST_STATUSES:
            raise QuestInactiveError()
        if user_objective["status"] != OS.AVAILABLE.value:
            raise _submit_error(user_objective["status"])

        text, url = self._validate_evidence(objective, text, url)
        now = self._now()
        user_objective = self._move_objective(
            user_objective,
            "submit",
            {"evidence_text": text, "evidence_url": url, "submitted_at": now},
            error=_submit_error,
        )
        if user_quest["status"] == QS.ACCEPTED.value:
            self._try_move_quest(user_quest, "start", {"started_at": now})

        self._notify_gms(NotificationType.EVIDENCE_SUBMITTED, [principal.display, objective.get("title")],
                         ReferenceType.USER_OBJECTIVE, user_objective["id"])
        return user_objective

    @staticmethod
    def _validate_evidence(objective: dict, text: Optional[str], url: Optional[str]):
        if not objective.get("evidence_required", True):
            raise ValidationError("This objective does not require evidence. Mark it complete instead.")

        text = text.strip() if text else None
        url = url.strip() if url else None
        if not text and not url:
            raise ValidationError("Either text evidence or URL evidence is required")

        evidence_type = objective.get("evidence_type") or EvidenceType.TEXT_OR_LINK.value
        if evidence_type == EvidenceType.TEXT.value:
            if url:
                raise ValidationError("This objective only accepts text evidence")
        elif evidence_type == EvidenceType.LINK.value:
            if text:
                raise ValidationError("This objective only accepts a link as evidence")

        if text is not None:
            if len(text) < EVIDENCE_TEXT_MIN:
                raise ValidationError(f"Evidence must be at least {EVIDENCE_TEXT_MIN} characters")
            if len(text) > EVIDENCE_TEXT_MAX:
                raise ValidationError(f"Evidence must be less than {EVIDENCE_TEXT_MAX} characters")
        if url is not None:
            try:
                _url_adapter.validate_python(url)
            except PydanticValidationError as e:
                raise ValidationError("Please enter a valid URL") from e
        return text, url

    def mark_objective_complete(self, principal: Principal, user_objective_id: str) -> dict:
        user_objective, user_quest, objective = self._get_owned_user_objective(
            principal, user_objective_id, "You do not have permission to modify this objective"
        )
        if user_quest["status"] in TERMINAL_QUEST_STATUSES:
            raise QuestInactiveError()
        if objective.get("evidence_required", True):
            raise ValidationError("This objective requires evidence submission")
        if user_objective["status"] != OS.AVAILABLE.value:
            raise _submit_error(user_objective["status"])

        user_objective = self._move_objective(
            user_objective, "mark_complete", {"reviewed_at": self._now()}, error=_submit_error
        )
        self._after_approval(user_quest, user_objective)
        return user_objective

    # 4.3 unlock propagation and the ready check
    def _after_approval(self, user_quest: dict, approved: dict):
        now = self._now()
        user_objectives = self.store.list_user_objectives(user_quest_id=user_quest["id"])
        for dependent in user_objectives:
            if dependent.get("depends_on_id") == approved["objective_id"] and dependent["status"] == OS.LOCKED.value:
                self._try_unlock(dependent)

        if user_quest["status"] == QS.ACCEPTED.value:
            user_quest = self._try_move_quest(user_quest, "start", {"started_at": now}) or user_quest

        user_objectives = self.store.list_user_objectives(user_quest_id=user_quest["id"])
        if user_objectives and all(o["status"] == OS.APPROVED.value for o in user_objectives):
            self._try_move_quest(user_quest, "ready", {"ready_to_claim_at": now})

    def _try_unlock(self, user_objective: dict) -> Optional[dict]:
        try:
            return self._move_objective(user_objective, "unlock")
        except InvalidStateError:
            return None

    def reconcile_locks(self, user_quest_id: str) -> List[dict]:
        """Unlock every locked objective whose prerequisite is approved; never re-locks."""
        user_objectives = self.store.list_user_objectives(user_quest_id=user_quest_id)
        approved = {o["objective_id"] for o in user_objectives if o["status"] == OS.APPROVED.value}
        result = []
        for user_objective in user_objectives:
            if user_objective["status"] == OS.LOCKED.value and user_objective.get("depends_on_id") in approved:
                user_objective = self._try_unlock(user_objective) or self.store.get_user_objective(user_objective["id"])
            result.append(user_objective)
        return result

    # 4.4 GM review of a submission
    def review_submission(self, principal: Principal, user_objective_id: str, decision, feedback: str = None) -> dict:
        self._require_gm(principal, "You do not have permission to review submissions")
        try:
            decision = ReviewDecision(decision)
        except ValueError as e:
            raise ValidationError("Decision must be 'approve' or 'reject'") from e

        feedback = feedback.strip() if feedback else None
        if decision == ReviewDecision.REJECT:
            if not feedback:
                raise FeedbackRequiredError()
            if len(feedback) < FEEDBACK_MIN:
                raise FeedbackRequiredError(
                    f"Please provide more detailed feedback (at least {FEEDBACK_MIN} characters)"
                )
        if feedback and len(feedback) > FEEDBACK_MAX:
            raise ValidationError(f"Feedback must be {FEEDBACK_MAX} characters or less")

        user_objective, user_quest, objective = self._get_user_objective(user_objective_id)
        if user_quest["status"] in TERMINAL_QUEST_STATUSES:
            raise QuestInactiveError("This quest is no longer active")
        if user_objective["status"] != OS.SUBMITTED.value:
            raise _review_error(user_objective["status"])

        now = self._now()
        review = {"reviewed_by": principal.id, "reviewed_at": now}
        if decision == ReviewDecision.APPROVE:
            if feedback:
                review["feedback"] = feedback
            user_objective = self._move_objective(user_objective, "approve", review, error=_review_error)
            self._after_approval(user_quest, user_objective)
            self._notify(user_quest["user_id"], NotificationType.EVIDENCE_APPROVED, [objective.get("title")],
                         ReferenceType.USER_OBJECTIVE, user_objective["id"])
        else:
            review["feedback"] = feedback
            review.update(_CLEARED_EVIDENCE)
            user_objective = self._move_objective(user_objective, "reject", review, error=_review_error)
            self._notify(user_quest["user_id"], NotificationType.EVIDENCE_REJECTED, [objective.get("title"), feedback],
                         ReferenceType.USER_OBJECTIVE, user_objective["id"])
        return user_objective

    # 4.5 claim and final approval
    def _requires_final_approval(self, quest: dict) -> bool:
        flag = quest.get("requires_final_approval")
        return self.require_final_approval if flag is None else bool(flag)

    def _award(self, user_quest: dict, quest: dict, action: str, changes: dict,
               error: Callable[[str], Exception]) -> dict:
        allowed, target = USER_QUEST_TRANSITIONS[action]
        points = int(quest.get("points") or 0)
        payload = {
            "status": target.value,
            "completed_at": self._now(),
            "updated_at": self._now(),
            "points_awarded": points,
        }
        payload.update(changes)
        try:
            updated = self.store.award_completion(user_quest["id"], allowed, payload, points)
        except StaleStateError as e:
            if e.reason == "objectives":
                raise InvalidStateError("All objectives must be approved before claiming the reward") from e
            raise error(e.current_status) from e
        logging.info(f"user quest {user_quest['id']} completed, {points} points to {user_quest['user_id']}")
        self._notify(user_quest["user_id"], NotificationType.QUEST_COMPLETED, [quest.get("title"), points],
                     ReferenceType.USER_QUEST, user_quest["id"])
        return updated

    def claim_quest_reward(self, principal: Principal, user_quest_id: str) -> dict:
        user_quest = self._get_owned_user_quest(
            principal, user_quest_id, "You do not have permission to claim this quest"
        )
        allowed, _ = USER_QUEST_TRANSITIONS["complete"]
        if user_quest["status"] not in allowed:
            raise _claim_error(user_quest["status"])

        user_objectives = self.store.list_user_objectives(user_quest_id=user_quest_id)
        if not user_objectives or any(o["status"] != OS.APPROVED.value for o in user_objectives):
            raise InvalidStateError("All objectives must be approved before claiming the reward")

        quest = self._get_quest(user_quest["quest_id"])
        if self._requires_final_approval(quest):
            user_quest = self._move_quest(
                user_quest, "request_final_approval", {"ready_to_claim_at": self._now()}, error=_claim_error
            )
            return {"user_quest_id": user_quest_id, "status": user_quest["status"], "points_awarded": 0}

        user_quest = self._award(user_quest, quest, "complete", {}, error=_claim_error)
        return {"user_quest_id": user_quest_id, "status": user_quest["status"],
                "points_awarded": user_quest["points_awarded"]}

    def gm_review_quest_completion(self, principal: Principal, user_quest_id: str, approved: bool,
                                   feedback: str = None) -> dict:
        self._require_gm(principal, "You do not have permission to review quest completions")
        feedback = feedback.strip() if feedback else None
        if feedback and len(feedback) > FEEDBACK_MAX:
            raise ValidationError(f"Feedback must be {FEEDBACK_MAX} characters or less")

        user_quest = self._get_user_quest(user_quest_id)
        if user_quest["status"] != QS.AWAITING_FINAL_APPROVAL.value:
            raise _final_review_error(user_quest["status"])

        quest = self._get_quest(user_quest["quest_id"])
        review = {
            "final_reviewed_by": principal.id,
            "final_reviewed_at": self._now(),
            "final_feedback": feedback,
        }
        if approved:
            user_quest = self._award(user_quest, quest, "final_approve", review, error=_final_review_error)
            return {"user_quest_id": user_quest_id, "status": user_quest["status"],
                    "points_awarded": user_quest["points_awarded"]}

        review["ready_to_claim_at"] = None
        user_quest = self._move_quest(user_quest, "final_reject", review, error=_final_review_error)
        self._notify(user_quest["user_id"], NotificationType.QUEST_COMPLETION_REJECTED,
                     [quest.get("title"), feedback or ""], ReferenceType.USER_QUEST, user_quest_id)
        return {"user_quest_id": user_quest_id, "status": user_quest["status"], "points_awarded": 0}

    # 4.6 uncheck
    def uncheck_objective(self, principal: Principal, user_objective_id: str) -> dict:
        user_objective, user_quest, _ = self._get_owned_user_objective(
            principal, user_objective_id, "You do not have permission to modify this objective"
        )
        if user_quest["status"] in TERMINAL_QUEST_STATUSES:
            raise QuestInactiveError()
        if user_objective["status"] == OS.LOCKED.value:
            raise CannotUnlockError()

        user_objective = self._move_objective(
            user_objective,
            "uncheck",
            {**_CLEARED_EVIDENCE, **_CLEARED_REVIEW},
            error=lambda status: CannotUnlockError(),
        )

        demote_from, _ = USER_QUEST_TRANSITIONS["demote"]
        if user_quest["status"] in demote_from:
            if self._try_move_quest(user_quest, "demote", {"ready_to_claim_at": None}) is None:
                logging.warning(f"user quest {user_quest['id']} changed status while unchecking {user_objective_id}")
        return user_objective

    # 4.7 abandon
    def abandon_quest(self, principal: Principal, user_quest_id: str) -> dict:
        user_quest = self._get_owned_user_quest(principal, user_quest_id, "Not authorized to abandon this quest")
        allowed, _ = USER_QUEST_TRANSITIONS["abandon"]
        if user_quest["status"] not in allowed:
            raise _abandon_error(user_quest["status"])

        user_quest = self._move_quest(user_quest, "abandon", {"abandoned_at": self._now()}, error=_abandon_error)
        quest = self.store.get_quest(user_quest["quest_id"]) or {}
        self._notify_gms(NotificationType.QUEST_ABANDONED, [principal.display, quest.get("title")],
                         ReferenceType.USER_QUEST, user_quest_id)
        return user_quest

    # 4.8 extensions
    def request_extension(self, principal: Principal, user_quest_id: str, reason: str) -> dict:
        reason = (reason or "").strip()
        if len(reason) < REASON_MIN:
            raise ValidationError(f"Please provide a reason with at least {REASON_MIN} characters")
        if len(reason) > REASON_MAX:
            raise ValidationError(f"Reason must be less than {REASON_MAX} characters")

        user_quest = self._get_owned_user_quest(
            principal, user_quest_id, "You do not have permission to request an extension for this quest"
        )
        if user_quest.get("extension_requested"):
            raise AlreadyRequestedError()
        if not user_quest.get("deadline"):
            raise ValidationError("This quest does not have a deadline")
        if user_quest["status"] in (QS.COMPLETED.value, QS.ABANDONED.value):
            raise QuestInactiveError("Cannot request extension for a completed or abandoned quest")

        allowed = {s.value for s in QS} - _values(QS.COMPLETED, QS.ABANDONED)
        changes = {
            "extension_requested": True,
            "extension_requested_at": self._now(),
            "extension_reason": reason,
            "updated_at": self._now(),
        }
        try:
            user_quest = self.store.update_user_quest(user_quest_id, changes, expected_status=allowed)
        except StaleStateError as e:
            raise QuestInactiveError("Cannot request extension for a completed or abandoned quest") from e

        quest = self.store.get_quest(user_quest["quest_id"]) or {}
        self._notify_gms(NotificationType.EXTENSION_REQUESTED, [principal.display, quest.get("title")],
                         ReferenceType.USER_QUEST, user_quest_id)
        return user_quest

    def decide_extension(self, principal: Principal, user_quest_id: str, approved: bool,
                         new_deadline: datetime.datetime = None) -> dict:
        self._require_gm(principal, "You do not have permission to manage extensions")
        now = self._now()
        new_deadline = _as_aware(new_deadline)
        if approved:
            if new_deadline is None:
                raise ValidationError("A new deadline is required to approve an extension")
            if new_deadline <= now:
                raise ValidationError("New deadline must be in the future")

        user_quest = self._get_user_quest(user_quest_id)
        if not user_quest.get("extension_requested"):
            raise InvalidStateError("No extension has been requested for this quest")
        if user_quest.get("extension_granted") is not None:
            raise InvalidStateError("This extension request has already been decided")

        decision = {
            "extension_granted": bool(approved),
            "extension_decided_by": principal.id,
            "extension_decided_at": now,
        }
        quest = self.store.get_quest(user_quest["quest_id"]) or {}
        if approved:
            decision.update({
                "deadline": new_deadline,
                "extended_deadline": new_deadline,
                "deadline_notified": False,
            })
            if user_quest["status"] == QS.EXPIRED.value:
                decision["expired_at"] = None
                user_quest = self._move_quest(user_quest, "revive", decision)
            else:
                user_quest = self._update_unchanged_status(user_quest, decision)
            self._notify(user_quest["user_id"], NotificationType.EXTENSION_APPROVED,
                         [quest.get("title"), new_deadline.strftime("%Y-%m-%d %H:%M UTC")],
                         ReferenceType.USER_QUEST, user_quest_id)
        else:
            user_quest = self._update_unchanged_status(user_quest, decision)
            self._notify(user_quest["user_id"], NotificationType.EXTENSION_DENIED, [quest.get("title")],
                         ReferenceType.USER_QUEST, user_quest_id)
        return user_quest

    def _update_unchanged_status(self, user_quest: dict, changes: dict) -> dict:
        try:
            return self.store.update_user_quest(user_quest["id"], changes, expected_status=[user_quest["status"]])
        except StaleStateError as e:
            raise InvalidStateError("This quest changed while the request was being decided") from e

    # deadlines
    def expire_overdue_quests(self, now: datetime.datetime = None) -> Dict[str, int]:
        now = _as_aware(now) or self._now()
        expired = reminded = 0
        allowed, _ = USER_QUEST_TRANSITIONS["expire"]
        for user_quest in self.store.list_user_quests(statuses=allowed):
            deadline = _as_aware(user_quest.get("deadline"))
            if deadline is None:
                continue
            if deadline < now:
                if self._try_move_quest(user_quest, "expire", {"expired_at": now}) is not None:
                    expired += 1
            elif deadline - now <= DEADLINE_REMINDER_WINDOW and not user_quest.get("deadline_notified"):
                self.store.update_user_quest(user_quest["id"], {"deadline_notified": True})
                quest = self.store.get_quest(user_quest["quest_id"]) or {}
                self._notify(user_quest["user_id"], NotificationType.DEADLINE_APPROACHING,
                             [quest.get("title"), deadline.strftime("%Y-%m-%d %H:%M UTC")],
                             ReferenceType.USER_QUEST, user_quest["id"])
                reminded += 1
        if expired or reminded:
            logging.info(f"Deadline sweep: {expired} expired, {reminded} reminded")
        return {"expired": expired, "reminded": reminded}
