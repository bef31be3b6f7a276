from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..config import get_settings
from ..deps import get_current_principal, get_directory, get_ranking_repo, require_roles
from ..domain.errors import DomainError
from ..domain.repositories import ProfileDirectory, RankingRepository
from ..models import Role
from ..schemas import LeaderboardEntryRead, RankingRead, RankingSubmit
from ..usecases import rankings as ranking_usecase
from .errors import audit_or_500, to_http_exception

router = APIRouter(prefix="", tags=["rankings"], dependencies=[Depends(get_current_principal)])

_ranker = require_roles(Role.MEMBER, Role.ADMIN)
_admin = require_roles(Role.ADMIN)


@router.put("/me/ranking", response_model=RankingRead)
async def submit_ranking(
    payload: RankingSubmit,
    ranking_repo: RankingRepository = Depends(get_ranking_repo),
    principal_id: str = Depends(_ranker),
) -> RankingRead:
    try:
        ranking = await ranking_usecase.submit_ranking(
            ranking_repo,
            ranker_id=principal_id,
            candidate_ids=payload.candidate_ids,
            max_length=get_settings().max_ranking_length,
        )
    except DomainError as exc:
        raise to_http_exception(exc) from exc

    audit_or_500(
        action="ranking.submitted",
        initiator="member",
        actor_id=principal_id,
        extra={"ranked": len(ranking.candidate_ids)},
    )
    return RankingRead.from_db(ranking=ranking)


@router.get("/me/ranking", response_model=RankingRead)
async def get_my_ranking(
    ranking_repo: RankingRepository = Depends(get_ranking_repo),
    principal_id: str = Depends(_ranker),
) -> RankingRead:
    try:
        ranking = await ranking_usecase.get_ranking(ranking_repo, ranker_id=principal_id)
    except DomainError as exc:
        raise to_http_exception(exc) from exc
    if ranking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ranking not found")
    return RankingRead.from_db(ranking=ranking)


@router.get("/rankings/leaderboard", response_model=List[LeaderboardEntryRead], dependencies=[Depends(_admin)])
async def get_leaderboard(
    limit: Optional[int] = Query(default=None, ge=1),
    ranking_repo: RankingRepository = Depends(get_ranking_repo),
    directory: ProfileDirectory = Depends(get_directory),
) -> list[LeaderboardEntryRead]:
    try:
        universe = await directory.list_candidate_ids()
        entries = await ranking_usecase.get_leaderboard(ranking_repo, candidate_universe=universe, limit=limit)
    except DomainError as exc:
        raise to_http_exception(exc) from exc
    return LeaderboardEntryRead.from_entries(entries)
