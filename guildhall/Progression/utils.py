from typing import List, Optional

from ..errors import NotAuthorizedError, NotFoundError
from ..User.models import Principal
from .engine import TERMINAL_QUEST_STATUSES, QuestProgression
from .models import UserObjectiveStatus, UserQuestStatus


def _objective_view(user_objective: dict, objective: dict) -> dict:
    view = dict(user_objective)
    view.update({
        "title": objective.get("title"),
        "points": objective.get("points", 0),
        "display_order": objective.get("display_order", 0),
        "evidence_required": objective.get("evidence_required", True),
        "evidence_type": objective.get("evidence_type", "text_or_link"),
    })
    return view


def _user_quest_view(user_quest: dict, quest: dict, user_objectives: List[dict]) -> dict:
    view = dict(user_quest)
    view.update({
        "quest_title": quest.get("title"),
        "quest_points": quest.get("points", 0),
        "objectives_total": len(user_objectives),
        "objectives_approved": sum(1 for o in user_objectives if o["status"] == UserObjectiveStatus.APPROVED.value),
    })
    return view


def list_user_quests(store, principal: Principal, status: Optional[UserQuestStatus] = None) -> List[dict]:
    statuses = [status.value] if status else None
    user_quests = store.list_user_quests(user_id=principal.id, statuses=statuses)
    user_quests.sort(key=lambda uq: uq.get("accepted_at"), reverse=True)

    result = []
    for user_quest in user_quests:
        quest = store.get_quest(user_quest["quest_id"]) or {}
        user_objectives = store.list_user_objectives(user_quest_id=user_quest["id"])
        result.append(_user_quest_view(user_quest, quest, user_objectives))
    return result


def get_user_quest_detail(store, engine: QuestProgression, principal: Principal, user_quest_id: str) -> dict:
    user_quest = store.get_user_quest(user_quest_id)
    if user_quest is None:
        raise NotFoundError("Quest not found")
    if user_quest["user_id"] != principal.id and not principal.is_gm:
        raise NotAuthorizedError("You do not have permission to view this quest")

    # rows seeded before a prerequisite was approved may still be locked
    user_objectives = engine.reconcile_locks(user_quest_id)
    quest = store.get_quest(user_quest["quest_id"]) or {}
    objectives = {o["id"]: o for o in store.list_objectives(user_quest["quest_id"])}

    view = _user_quest_view(user_quest, quest, user_objectives)
    view["objectives"] = sorted(
        (_objective_view(uo, objectives.get(uo["objective_id"], {})) for uo in user_objectives),
        key=lambda o: o["display_order"],
    )
    return view


def objective_view(store, user_objective: dict) -> dict:
    return _objective_view(user_objective, store.get_objective(user_objective["objective_id"]) or {})


def user_quest_view(store, user_quest: dict) -> dict:
    quest = store.get_quest(user_quest["quest_id"]) or {}
    return _user_quest_view(user_quest, quest, store.list_user_objectives(user_quest_id=user_quest["id"]))


# GM queues
def list_pending_submissions(store) -> List[dict]:
    result = []
    for user_objective in store.list_user_objectives(status=UserObjectiveStatus.SUBMITTED.value):
        user_quest = store.get_user_quest(user_objective["user_quest_id"])
        if user_quest is None or user_quest["status"] in TERMINAL_QUEST_STATUSES:
            continue
        quest = store.get_quest(user_quest["quest_id"]) or {}
        view = objective_view(store, user_objective)
        view.update({
            "user_id": user_quest["user_id"],
            "quest_id": user_quest["quest_id"],
            "quest_title": quest.get("title"),
        })
        result.append(view)
    result.sort(key=lambda o: o.get("submitted_at"))
    return result


def list_extension_requests(store) -> List[dict]:
    result = []
    for user_quest in store.list_user_quests():
        if not user_quest.get("extension_requested") or user_quest.get("extension_granted") is not None:
            continue
        quest = store.get_quest(user_quest["quest_id"]) or {}
        result.append({
            "id": user_quest["id"],
            "user_id": user_quest["user_id"],
            "quest_id": user_quest["quest_id"],
            "quest_title": quest.get("title"),
            "extension_reason": user_quest.get("extension_reason"),
            "extension_requested_at": user_quest.get("extension_requested_at"),
            "current_deadline": user_quest.get("deadline"),
            "status": user_quest["status"],
        })
    result.sort(key=lambda r: r.get("extension_requested_at"))
    return result


def list_pending_approvals(store) -> List[dict]:
    result = []
    for user_quest in store.list_user_quests(statuses=[UserQuestStatus.AWAITING_FINAL_APPROVAL.value]):
        quest = store.get_quest(user_quest["quest_id"]) or {}
        result.append({
            "id": user_quest["id"],
            "user_id": user_quest["user_id"],
            "quest_id": user_quest["quest_id"],
            "quest_title": quest.get("title"),
            "quest_points": quest.get("points", 0),
            "ready_to_claim_at": user_quest.get("ready_to_claim_at"),
        })
    result.sort(key=lambda r: r.get("ready_to_claim_at"))
    return result
