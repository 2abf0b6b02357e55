"""
Public pages: home, published challenge listing and detail.
No authentication required.
"""

from fastapi import APIRouter, Request

from .. import challenges
from ..errors import NotFound
from ..schemas import ChallengeOut, ChallengeSummary, page_out
from ..security import DBSessionDep
from .helpers import bracket_params

router = APIRouter(tags=["public"])


@router.get("/")
def home(db: DBSessionDep):
    """Home page: the published challenges closing soonest."""
    page = challenges.all(db, per=6)
    return {"challenges": page_out(page, ChallengeSummary.build)}


@router.get("/public/challenges")
def list_public_challenges(
    request: Request, db: DBSessionDep, page: int = 1, per: int = 10
):
    result = challenges.all(db, bracket_params(request, "filter"), page, per)
    return page_out(result, ChallengeSummary.build)


@router.get("/public/challenges/{challenge_id}", response_model=ChallengeOut)
def get_public_challenge(challenge_id: int, db: DBSessionDep):
    challenge = challenges.get(db, challenge_id)
    if not challenges.is_public(challenge):
        raise NotFound("challenge")
    return ChallengeOut.build(challenge)
