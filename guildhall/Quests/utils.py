import logging
from typing import List, Optional

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..Progression.engine import TERMINAL_QUEST_STATUSES, utcnow
from ..Progression.models import UserQuestStatus
from ..User.models import Principal
from .models import (CATEGORIES, METADATA_FIELDS, Objective, ObjectivePatch,
                     Quest, QuestPatch, QuestStatus)

ACTIVE_QUEST_STATUSES = [s.value for s in UserQuestStatus if s.value not in TERMINAL_QUEST_STATUSES]


def get_quest_or_404(store, quest_id: str) -> dict:
    quest = store.get_quest(quest_id)
    if quest is None:
        raise NotFoundError("Quest not found")
    return quest


def count_active_attempts(store, quest_id: str) -> int:
    return len(store.list_user_quests(quest_id=quest_id, statuses=ACTIVE_QUEST_STATUSES))


def quest_with_objectives(store, quest: dict, gm: bool = False) -> dict:
    quest = dict(quest)
    quest["objectives"] = store.list_objectives(quest["id"])
    if gm:
        quest["active_attempts"] = count_active_attempts(store, quest["id"])
    else:
        quest.pop("exclusive_code", None)
    return quest


def list_categories() -> List[dict]:
    return sorted(CATEGORIES, key=lambda c: c["display_order"])


def _check_category(category_id: Optional[str]):
    if category_id is not None and category_id not in {c["id"] for c in CATEGORIES}:
        raise ValidationError("Unknown category")


def _matches(quest: dict, search: str) -> bool:
    needle = search.strip().lower()
    return needle in (quest.get("title") or "").lower() or needle in (quest.get("description") or "").lower()


def list_published_quests(store, category_id: str = None, search: str = None, featured: bool = None) -> List[dict]:
    quests = [q for q in store.list_quests(status=QuestStatus.PUBLISHED.value) if not q.get("is_template")]
    if category_id is not None:
        quests = [q for q in quests if q.get("category_id") == category_id]
    if search:
        quests = [q for q in quests if _matches(q, search)]
    if featured is not None:
        quests = [q for q in quests if bool(q.get("featured")) == featured]
    quests.sort(key=lambda q: (not q.get("featured", False), q.get("created_at")))
    return [quest_with_objectives(store, quest) for quest in quests]


def create_quest(store, principal: Principal, quest: Quest, template_id: str = None) -> dict:
    _check_category(quest.category_id)
    now = utcnow()
    data = quest.model_dump(mode="python")
    data["difficulty"] = quest.difficulty.value
    data["exclusive_code"] = quest.exclusive_code.strip() if quest.exclusive_code else None
    data.update({
        "status": QuestStatus.DRAFT.value,
        "created_by": principal.id,
        "template_id": template_id,
        "created_at": now,
        "updated_at": now,
    })
    created = store.create_quest(data)
    logging.info(f"{principal.id} created quest {created['id']}")
    return created


def update_quest(store, principal: Principal, quest_id: str, patch: QuestPatch) -> dict:
    quest = get_quest_or_404(store, quest_id)
    changes = patch.model_dump(exclude_unset=True, mode="python")
    if not changes:
        return quest

    locked_fields = set(changes) - METADATA_FIELDS
    if locked_fields and count_active_attempts(store, quest_id):
        raise InvalidStateError(
            "Adventurers are on this quest; only title, description and badge can change"
        )

    if "category_id" in changes:
        _check_category(changes["category_id"])
    if "difficulty" in changes and changes["difficulty"] is not None:
        changes["difficulty"] = changes["difficulty"].value
    merged = dict(quest)
    merged.update(changes)
    if merged.get("is_exclusive") and not (merged.get("exclusive_code") or "").strip():
        raise ValidationError("Exclusive quests need an unlock code")

    changes["updated_at"] = utcnow()
    updated = store.update_quest(quest_id, changes)
    logging.info(f"{principal.id} updated quest {quest_id}: {sorted(changes)}")
    return updated


def _next_display_order(objectives: List[dict]) -> int:
    return max((o.get("display_order", 0) for o in objectives), default=-1) + 1


def _check_dependency(objectives: List[dict], objective_id: Optional[str], depends_on_id: Optional[str]):
    if depends_on_id is None:
        return
    by_id = {o["id"]: o for o in objectives}
    if depends_on_id not in by_id:
        raise ValidationError("An objective can only depend on another objective of the same quest")

    # walk the predecessor chain; reaching the edited objective means a cycle
    seen = set()
    current = depends_on_id
    while current is not None:
        if current == objective_id or current in seen:
            raise ValidationError("Objective dependencies cannot form a cycle")
        seen.add(current)
        current = by_id.get(current, {}).get("depends_on_id")


def add_objective(store, principal: Principal, quest_id: str, objective: Objective) -> dict:
    get_quest_or_404(store, quest_id)
    if count_active_attempts(store, quest_id):
        raise InvalidStateError("Objectives cannot be added while adventurers are on this quest")

    objectives = store.list_objectives(quest_id)
    _check_dependency(objectives, None, objective.depends_on_id)

    data = objective.model_dump(mode="python")
    data["evidence_type"] = objective.evidence_type.value
    data["quest_id"] = quest_id
    if data["display_order"] is None:
        data["display_order"] = _next_display_order(objectives)
    created = store.create_objective(data)
    logging.info(f"{principal.id} added objective {created['id']} to quest {quest_id}")
    return created


def update_objective(store, principal: Principal, objective_id: str, patch: ObjectivePatch) -> dict:
    objective = store.get_objective(objective_id)
    if objective is None:
        raise NotFoundError("Objective not found")
    if count_active_attempts(store, objective["quest_id"]):
        raise InvalidStateError("Objectives cannot be edited while adventurers are on this quest")

    changes = patch.model_dump(exclude_unset=True, mode="python")
    if "depends_on_id" in changes:
        _check_dependency(store.list_objectives(objective["quest_id"]), objective_id, changes["depends_on_id"])

    merged = dict(objective)
    merged.update(changes)
    if merged.get("evidence_required") is False:
        changes["evidence_type"] = "none"
    elif merged.get("evidence_type") in (None, "none"):
        raise ValidationError("Objectives that require evidence need an evidence type")
    if "evidence_type" in changes and changes["evidence_type"] is not None:
        changes["evidence_type"] = getattr(changes["evidence_type"], "value", changes["evidence_type"])

    return store.update_objective(objective_id, changes)


def publish_quest(store, principal: Principal, quest_id: str) -> dict:
    quest = get_quest_or_404(store, quest_id)
    if quest["status"] == QuestStatus.PUBLISHED.value:
        raise InvalidStateError("Quest is already published")
    if quest.get("is_template"):
        raise ValidationError("Templates cannot be published; create a quest from the template instead")
    if not store.list_objectives(quest_id):
        raise ValidationError("A quest needs at least one objective before it can be published")

    updated = store.update_quest(quest_id, {"status": QuestStatus.PUBLISHED.value, "updated_at": utcnow()})
    logging.info(f"{principal.id} published quest {quest_id}")
    return updated


def archive_quest(store, principal: Principal, quest_id: str) -> dict:
    quest = get_quest_or_404(store, quest_id)
    if quest["status"] == QuestStatus.ARCHIVED.value:
        raise InvalidStateError("Quest is already archived")

    updated = store.update_quest(quest_id, {"status": QuestStatus.ARCHIVED.value, "updated_at": utcnow()})
    logging.info(f"{principal.id} archived quest {quest_id}")
    return updated


def list_templates(store) -> List[dict]:
    templates = [q for q in store.list_quests() if q.get("is_template")]
    templates.sort(key=lambda q: q.get("created_at"), reverse=True)
    return [quest_with_objectives(store, template, gm=True) for template in templates]


def convert_to_template(store, principal: Principal, quest_id: str) -> dict:
    quest = get_quest_or_404(store, quest_id)
    if quest.get("is_template"):
        raise InvalidStateError("Quest is already a template")
    if quest["status"] != QuestStatus.DRAFT.value:
        raise InvalidStateError("Only draft quests can become templates")

    updated = store.update_quest(quest_id, {"is_template": True, "updated_at": utcnow()})
    logging.info(f"{principal.id} turned quest {quest_id} into a template")
    return updated


def clone_template(store, principal: Principal, template_id: str, overrides: QuestPatch = None) -> dict:
    """Create a draft quest from a template, copying its objectives and their dependencies."""
    template = get_quest_or_404(store, template_id)
    if not template.get("is_template"):
        raise ValidationError("Quest is not a template")

    data = {field: template[field] for field in Quest.model_fields if template.get(field) is not None}
    data["title"] = f"{template['title']} (Copy)"[:100]
    data["acceptance_deadline"] = None
    data["is_template"] = False
    if overrides is not None:
        data.update(overrides.model_dump(exclude_unset=True))
    quest = create_quest(store, principal, Quest(**data), template_id=template_id)

    # dependencies point at the copies, so they are wired once every copy exists
    copies = {}
    for objective in store.list_objectives(template_id):
        duplicate = {key: value for key, value in objective.items() if key not in ("id", "quest_id", "depends_on_id")}
        duplicate["quest_id"] = quest["id"]
        duplicate["depends_on_id"] = None
        copies[objective["id"]] = (store.create_objective(duplicate), objective.get("depends_on_id"))
    for created, depends_on_id in copies.values():
        if depends_on_id in copies:
            store.update_objective(created["id"], {"depends_on_id": copies[depends_on_id][0]["id"]})

    logging.info(f"{principal.id} created quest {quest['id']} from template {template_id}")
    return quest
