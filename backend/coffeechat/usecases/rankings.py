from typing import Iterable, Optional, Sequence

from ..domain.errors import ValidationError
from ..domain.repositories import RankingRepository
from ..domain.services import LeaderboardEntry, compute_leaderboard, validate_ranking
from ..models import Ranking

DEFAULT_MAX_LENGTH = 25


async def submit_ranking(
    ranking_repo: RankingRepository,
    *,
    ranker_id: str,
    candidate_ids: Sequence[str],
    max_length: int = DEFAULT_MAX_LENGTH,
) -> Ranking:
    """Store the ranker's ordered list, replacing any earlier submission."""
    if not ranker_id:
        raise ValidationError("ranker id is required")
    ordered = validate_ranking(candidate_ids, max_length=max_length)
    return await ranking_repo.upsert(ranker_id, ordered)


async def get_ranking(ranking_repo: RankingRepository, *, ranker_id: str) -> Optional[Ranking]:
    return await ranking_repo.get(ranker_id)


async def get_leaderboard(
    ranking_repo: RankingRepository,
    *,
    candidate_universe: Optional[Iterable[str]] = None,
    limit: Optional[int] = None,
) -> list[LeaderboardEntry]:
    rankings = await ranking_repo.list_all()
    return compute_leaderboard(
        (ranking.candidate_ids for ranking in rankings),
        candidate_universe,
        limit=limit,
    )
