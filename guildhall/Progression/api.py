import logging
from typing import List

from fastapi import Depends
from fastapi_utils.tasks import repeat_every

from ..errors import GuildHallError
from ..metrics import record_transition
from ..notifications.utils import Notifier
from ..settings import EXPIRY_SWEEP_SECONDS, REQUIRE_FINAL_APPROVAL, app, store
from ..User.deps import get_current_user, require_gm
from ..User.models import Principal
from .engine import QuestProgression
from .models import (AcceptQuestParam, ClaimResp, EvidenceParam,
                     ExtensionDecisionParam, ExtensionRequestParam,
                     ExtensionRequestResp, PendingApprovalResp,
                     PendingSubmissionResp, QuestCompletionReviewParam,
                     ReviewParam, SuccessResp, UserObjectiveResp,
                     UserQuestDetailResp, UserQuestResp, UserQuestStatus)
from .utils import (get_user_quest_detail, list_extension_requests,
                    list_pending_approvals, list_pending_submissions,
                    list_user_quests, objective_view, user_quest_view)

engine = QuestProgression(store, Notifier(store), require_final_approval=REQUIRE_FINAL_APPROVAL)

AWARDING_OPERATIONS = {"claim", "final_review"}


def perform(operation: str, func, *args, **kwargs):
    try:
        result = func(*args, **kwargs)
    except GuildHallError as e:
        record_transition(operation, e.code)
        raise
    points = (result.get("points_awarded") or 0) if operation in AWARDING_OPERATIONS else 0
    record_transition(operation, "success", points=points)
    return result


# Adventurer
@app.post("/api/v1/quests/{quest_id}/accept", response_model=SuccessResp[UserQuestResp])
async def accept_quest(quest_id: str, param: AcceptQuestParam = None, principal: Principal = Depends(get_current_user)):
    code = param.exclusive_code if param else None
    user_quest = perform("accept", engine.accept_quest, principal, quest_id, code)
    return {"data": user_quest_view(store, user_quest)}


@app.get("/api/v1/user/quests/", response_model=List[UserQuestResp])
async def get_my_quests(status: UserQuestStatus = None, principal: Principal = Depends(get_current_user)):
    return list_user_quests(store, principal, status)


@app.get("/api/v1/user/quests/{user_quest_id}", response_model=UserQuestDetailResp)
async def get_my_quest(user_quest_id: str, principal: Principal = Depends(get_current_user)):
    return get_user_quest_detail(store, engine, principal, user_quest_id)


@app.post("/api/v1/user/quests/{user_quest_id}/abandon", response_model=SuccessResp[UserQuestResp])
async def abandon_quest(user_quest_id: str, principal: Principal = Depends(get_current_user)):
    user_quest = perform("abandon", engine.abandon_quest, principal, user_quest_id)
    return {"data": user_quest_view(store, user_quest)}


@app.post("/api/v1/user/quests/{user_quest_id}/claim", response_model=SuccessResp[ClaimResp])
async def claim_quest_reward(user_quest_id: str, principal: Principal = Depends(get_current_user)):
    return {"data": perform("claim", engine.claim_quest_reward, principal, user_quest_id)}


@app.post("/api/v1/user/quests/{user_quest_id}/extension", response_model=SuccessResp[UserQuestResp])
async def request_extension(user_quest_id: str, param: ExtensionRequestParam, principal: Principal = Depends(get_current_user)):
    user_quest = perform("request_extension", engine.request_extension, principal, user_quest_id, param.reason)
    return {"data": user_quest_view(store, user_quest)}


@app.post("/api/v1/user/objectives/{user_objective_id}/evidence", response_model=SuccessResp[UserObjectiveResp])
async def submit_evidence(user_objective_id: str, param: EvidenceParam, principal: Principal = Depends(get_current_user)):
    user_objective = perform("submit", engine.submit_evidence, principal, user_objective_id, param.text, param.url)
    return {"data": objective_view(store, user_objective)}


@app.post("/api/v1/user/objectives/{user_objective_id}/complete", response_model=SuccessResp[UserObjectiveResp])
async def mark_objective_complete(user_objective_id: str, principal: Principal = Depends(get_current_user)):
    user_objective = perform("mark_complete", engine.mark_objective_complete, principal, user_objective_id)
    return {"data": objective_view(store, user_objective)}


@app.post("/api/v1/user/objectives/{user_objective_id}/uncheck", response_model=SuccessResp[UserObjectiveResp])
async def uncheck_objective(user_objective_id: str, principal: Principal = Depends(get_current_user)):
    user_objective = perform("uncheck", engine.uncheck_objective, principal, user_objective_id)
    return {"data": objective_view(store, user_objective)}


# Game Master
@app.get("/api/v1/gm/submissions/", response_model=List[PendingSubmissionResp])
async def get_pending_submissions(principal: Principal = Depends(require_gm)):
    return list_pending_submissions(store)


@app.post("/api/v1/gm/submissions/{user_objective_id}/review", response_model=SuccessResp[UserObjectiveResp])
async def review_submission(user_objective_id: str, param: ReviewParam, principal: Principal = Depends(get_current_user)):
    user_objective = perform("review", engine.review_submission, principal, user_objective_id,
                             param.decision, param.feedback)
    return {"data": objective_view(store, user_objective)}


@app.get("/api/v1/gm/extensions/", response_model=List[ExtensionRequestResp])
async def get_extension_requests(principal: Principal = Depends(require_gm)):
    return list_extension_requests(store)


@app.post("/api/v1/gm/extensions/{user_quest_id}/decide", response_model=SuccessResp[UserQuestResp])
async def decide_extension(user_quest_id: str, param: ExtensionDecisionParam, principal: Principal = Depends(get_current_user)):
    user_quest = perform("decide_extension", engine.decide_extension, principal, user_quest_id,
                         param.approved, param.new_deadline)
    return {"data": user_quest_view(store, user_quest)}


@app.get("/api/v1/gm/approvals/", response_model=List[PendingApprovalResp])
async def get_pending_approvals(principal: Principal = Depends(require_gm)):
    return list_pending_approvals(store)


@app.post("/api/v1/gm/approvals/{user_quest_id}/review", response_model=SuccessResp[ClaimResp])
async def review_quest_completion(user_quest_id: str, param: QuestCompletionReviewParam,
                            principal: Principal = Depends(get_current_user)):
    return {"data": perform("final_review", engine.gm_review_quest_completion, principal, user_quest_id,
                            param.approved, param.feedback)}


# Deadlines
@app.on_event("startup")
@repeat_every(seconds=EXPIRY_SWEEP_SECONDS, wait_first=EXPIRY_SWEEP_SECONDS)
def expire_overdue_quests():
    try:
        perform("expire", engine.expire_overdue_quests)
    except Exception as e:
        logging.error(f"Deadline sweep failed: {e}")
