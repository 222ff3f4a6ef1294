from typing import List

from fastapi import Depends, File, UploadFile

from ..errors import NotFoundError, ValidationError
from ..settings import app, store
from ..User.deps import get_current_user, require_gm
from ..User.models import Principal
from ..utils import IMAGE_CONTENT_TYPES, image_to_badge, send_bytes_to_storage
from .models import (CategoryResp, GMQuestResp, Objective, ObjectivePatch,
                     ObjectiveResp, Quest, QuestPatch, QuestResp, QuestStatus)
from .utils import (add_objective, archive_quest, clone_template,
                    convert_to_template, create_quest, get_quest_or_404,
                    list_categories, list_published_quests, list_templates,
                    publish_quest, quest_with_objectives, update_objective,
                    update_quest)


# Quest board
@app.get("/api/v1/categories/", response_model=List[CategoryResp])
async def get_categories(principal: Principal = Depends(get_current_user)):
    return list_categories()


@app.get("/api/v1/quests/", response_model=List[QuestResp])
async def get_quests(
    category_id: str = None,
    search: str = None,
    featured: bool = None,
    principal: Principal = Depends(get_current_user),
):
    return list_published_quests(store, category_id=category_id, search=search, featured=featured)


@app.get("/api/v1/quests/{quest_id}", response_model=QuestResp)
async def get_quest(quest_id: str, principal: Principal = Depends(get_current_user)):
    quest = get_quest_or_404(store, quest_id)
    if (quest["status"] != QuestStatus.PUBLISHED.value or quest.get("is_template")) and not principal.is_gm:
        raise NotFoundError("Quest not found")
    return quest_with_objectives(store, quest)


# GM authoring
@app.get("/api/v1/gm/quests/", response_model=List[GMQuestResp])
async def gm_get_quests(status: QuestStatus = None, principal: Principal = Depends(require_gm)):
    quests = store.list_quests(status=status.value if status else None)
    return [quest_with_objectives(store, quest, gm=True) for quest in quests]


@app.get("/api/v1/gm/quests/{quest_id}", response_model=GMQuestResp)
async def gm_get_quest(quest_id: str, principal: Principal = Depends(require_gm)):
    return quest_with_objectives(store, get_quest_or_404(store, quest_id), gm=True)


@app.post("/api/v1/gm/quests/", response_model=GMQuestResp)
async def gm_create_quest(quest: Quest, principal: Principal = Depends(require_gm)):
    created = create_quest(store, principal, quest)
    return quest_with_objectives(store, created, gm=True)


@app.patch("/api/v1/gm/quests/{quest_id}", response_model=GMQuestResp)
async def gm_update_quest(quest_id: str, patch: QuestPatch, principal: Principal = Depends(require_gm)):
    updated = update_quest(store, principal, quest_id, patch)
    return quest_with_objectives(store, updated, gm=True)


@app.post("/api/v1/gm/quests/{quest_id}/objectives/", response_model=ObjectiveResp)
async def gm_add_objective(quest_id: str, objective: Objective, principal: Principal = Depends(require_gm)):
    return add_objective(store, principal, quest_id, objective)


@app.patch("/api/v1/gm/objectives/{objective_id}", response_model=ObjectiveResp)
async def gm_update_objective(objective_id: str, patch: ObjectivePatch, principal: Principal = Depends(require_gm)):
    return update_objective(store, principal, objective_id, patch)


@app.post("/api/v1/gm/quests/{quest_id}/publish", response_model=GMQuestResp)
async def gm_publish_quest(quest_id: str, principal: Principal = Depends(require_gm)):
    return quest_with_objectives(store, publish_quest(store, principal, quest_id), gm=True)


@app.post("/api/v1/gm/quests/{quest_id}/archive", response_model=GMQuestResp)
async def gm_archive_quest(quest_id: str, principal: Principal = Depends(require_gm)):
    return quest_with_objectives(store, archive_quest(store, principal, quest_id), gm=True)


@app.post("/api/v1/gm/quests/{quest_id}/badge", response_model=GMQuestResp)
async def gm_upload_badge(quest_id: str, image: UploadFile = File(...), principal: Principal = Depends(require_gm)):
    get_quest_or_404(store, quest_id)
    if image.content_type not in IMAGE_CONTENT_TYPES:
        raise ValidationError("Badges must be PNG, JPEG, WEBP or GIF images")

    badge = image_to_badge(await image.read())
    badge_url = await send_bytes_to_storage(badge, f"quests/{quest_id}/badge.png", "image/png")
    updated = update_quest(store, principal, quest_id, QuestPatch(badge_url=badge_url))
    return quest_with_objectives(store, updated, gm=True)


# Templates
@app.get("/api/v1/gm/templates/", response_model=List[GMQuestResp])
async def gm_get_templates(principal: Principal = Depends(require_gm)):
    return list_templates(store)


@app.post("/api/v1/gm/quests/{quest_id}/template", response_model=GMQuestResp)
async def gm_convert_to_template(quest_id: str, principal: Principal = Depends(require_gm)):
    return quest_with_objectives(store, convert_to_template(store, principal, quest_id), gm=True)


@app.post("/api/v1/gm/templates/{template_id}/clone", response_model=GMQuestResp)
async def gm_clone_template(template_id: str, overrides: QuestPatch = None, principal: Principal = Depends(require_gm)):
    return quest_with_objectives(store, clone_template(store, principal, template_id, overrides), gm=True)
