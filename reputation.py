"""
Reputation ledger

Every reputation change is appended to the "reputation_event" collection and
mirrored onto the denormalized `user.reputation` counters in the same call.
Point values live in AWARDS only; there is no decrement path.
"""

import logging
from typing import Dict, Iterable, List, Optional

from pymongo.database import Database

from database import id_filter, user_summary, utcnow
from schemas import ReputationEvent

logger = logging.getLogger(__name__)

AWARDS: Dict[str, Dict[str, int]] = {
    "problem_posted": {"points": 5},
    "solution_submitted": {"points": 10},
    "problem_completed": {"points": 15, "project_contributions": 1},
    "collaborator_acknowledged": {"points": 10, "project_contributions": 1},
    "project_created": {"points": 10},
    "project_joined": {"points": 0, "project_contributions": 1},
    # challenge points scale with the challenge, see submission_bonus/winner_bonus
    "challenge_submission": {"points": 0},
    "challenge_won": {"points": 0, "completed_challenges": 1},
}

# percent of the challenge points paid per rank
RANK_SHARES = {1: 100, 2: 70, 3: 50}
DEFAULT_RANK_SHARE = 30


def submission_bonus(challenge_points: int) -> int:
    return challenge_points // 2


def winner_bonus(challenge_points: int, rank: int) -> int:
    return challenge_points * RANK_SHARES.get(rank, DEFAULT_RANK_SHARE) // 100


def award(
    db: Database,
    user_ids: Iterable[str],
    reason: str,
    source: Optional[dict] = None,
    points: Optional[int] = None,
) -> int:
    """Record `reason` for each user once and bump their counters.

    Returns the number of users whose counters were updated.
    """
    rule = AWARDS[reason]
    points = rule["points"] if points is None else points
    contributions = rule.get("project_contributions", 0)
    completed = rule.get("completed_challenges", 0)

    ids = list(dict.fromkeys(str(i) for i in user_ids))
    if not ids:
        return 0

    now = utcnow()
    events = [
        {
            **ReputationEvent(
                user_id=user_id,
                reason=reason,
                points=points,
                project_contributions=contributions,
                completed_challenges=completed,
                source=source or {},
            ).model_dump(),
            "created_at": now,
        }
        for user_id in ids
    ]
    db["reputation_event"].insert_many(events)

    inc = {}
    if points:
        inc["reputation.score"] = points
    if contributions:
        inc["reputation.project_contributions"] = contributions
    if completed:
        inc["reputation.completed_challenges"] = completed
    if not inc:
        return 0

    result = db["user"].update_many(id_filter(ids), {"$inc": inc})
    logger.info("Reputation %s: +%s to %d user(s)", reason, points, result.modified_count)
    return result.modified_count


def history(db: Database, user_id: str, limit: int = 50) -> List[dict]:
    cursor = db["reputation_event"].find({"user_id": user_id}).sort([("created_at", -1), ("_id", -1)]).limit(limit)
    return list(cursor)


def leaderboard(db: Database, limit: int = 50) -> List[dict]:
    pipeline = [
        {"$group": {"_id": "$user_id", "score": {"$sum": "$points"}}},
        {"$sort": {"score": -1}},
        {"$limit": limit},
    ]
    rows = list(db["reputation_event"].aggregate(pipeline))
    users = {str(u["_id"]): u for u in db["user"].find(id_filter(r["_id"] for r in rows))}
    items = []
    for r in rows:
        user = users.get(r["_id"])
        if user is None:
            continue
        items.append({"user": user_summary(user, ("name", "avatar")), "score": r["score"]})
    return items
