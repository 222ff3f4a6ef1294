from typing import List

from fastapi import Depends, Query

from ..errors import NotFoundError
from ..settings import app, store
from ..User.deps import get_current_user
from ..User.models import Principal, UserRankingResp
from .utils import get_ranking, get_ranking_entry


@app.get("/api/v1/leaderboard/", response_model=List[UserRankingResp])
async def get_leaderboard(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=0, le=200),
    principal: Principal = Depends(get_current_user),
):
    ranking_list = get_ranking(store)
    if limit == 0:
        return ranking_list[offset:]
    return ranking_list[offset:offset + limit]


@app.get("/api/v1/leaderboard/me", response_model=UserRankingResp)
async def get_my_ranking(principal: Principal = Depends(get_current_user)):
    entry = get_ranking_entry(store, principal.id)
    if entry is None:
        raise NotFoundError("User not found")
    return entry
