import re
import logging
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo.database import Database

import reputation
from database import as_utc, create_document, find_item, find_or_404, get_db, paginate, populate, serialize, to_oid, utcnow
from schemas import (
    Challenge as ChallengeSchema,
    ChallengeCategory,
    ChallengeEstimate,
    Difficulty,
    Submission,
    Winner,
)
from security import get_current_user
from voting import toggle_member, toggle_vote

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/challenges", tags=["challenges"])

URL_RE = re.compile(r"^https?://.+\..+")
DETAIL_PATHS = ("created_by", "participants", "submissions.participant", "winners.participant")


class ChallengeCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=50, max_length=3000)
    instructions: str = Field(..., min_length=20, max_length=5000)
    category: ChallengeCategory
    difficulty: Difficulty
    start_date: datetime
    end_date: datetime
    points: int = Field(100, ge=50, le=1000)
    skills_required: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    estimated_time: ChallengeEstimate = "3-5 hours"
    is_active: bool = True

    @field_validator("start_date", "end_date")
    @classmethod
    def in_utc(cls, v):
        return as_utc(v)


class SubmissionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    submission_url: Optional[str] = None
    demo_url: Optional[str] = None
    description: str = Field(..., min_length=20, max_length=1000)
    files: Optional[List[dict]] = None

    @field_validator("submission_url", "demo_url")
    @classmethod
    def valid_url(cls, v):
        if v and not URL_RE.match(v):
            raise ValueError("Invalid URL")
        return v


class WinnerInput(BaseModel):
    participant: str
    rank: int = Field(..., ge=1)
    prize: str = ""

    @field_validator("participant")
    @classmethod
    def valid_participant(cls, v):
        if not ObjectId.is_valid(v):
            raise ValueError("Invalid participant ID")
        return v


class WinnersAnnouncement(BaseModel):
    winners: List[WinnerInput]


def challenge_or_404(db: Database, challenge_id: str) -> dict:
    return find_or_404(db, "challenge", challenge_id, "Challenge not found")


def present(db: Database, challenge: dict, paths=DETAIL_PATHS) -> dict:
    return serialize(populate(db, challenge, *paths))


def reload(db: Database, challenge: dict) -> dict:
    return db["challenge"].find_one({"_id": challenge["_id"]})


@router.get("")
def list_challenges(
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    status: Literal["active", "upcoming", "ended", "all"] = "active",
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = "start_date",
    order: Literal["asc", "desc"] = "desc",
    db: Database = Depends(get_db),
):
    now = utcnow()
    query = {}
    if category and category != "All":
        query["category"] = category
    if difficulty and difficulty != "All":
        query["difficulty"] = difficulty

    if status == "active":
        query["is_active"] = True
        query["start_date"] = {"$lte": now}
        query["end_date"] = {"$gte": now}
    elif status == "upcoming":
        query["start_date"] = {"$gt": now}
    elif status == "ended":
        query["end_date"] = {"$lt": now}

    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]

    cursor = db["challenge"].find(query).sort(sort_by, -1 if order == "desc" else 1)
    challenges = [present(db, c, ("created_by",)) for c in paginate(cursor, page, limit)]
    total = db["challenge"].count_documents(query)
    return {"challenges": challenges, "total_pages": -(-total // limit), "current_page": page, "total": total}


@router.get("/my/participated")
def participated(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cursor = db["challenge"].find({"participants": str(user["_id"])}).sort("created_at", -1)
    return [present(db, c, ("created_by",)) for c in cursor]


@router.get("/my/submissions")
def my_submissions(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    items = []
    for challenge in db["challenge"].find({"submissions.participant": user_id}).sort("created_at", -1):
        mine = next((s for s in challenge.get("submissions", []) if s.get("participant") == user_id), None)
        items.append({
            "challenge": {
                "_id": challenge["_id"],
                **{k: challenge.get(k) for k in ("title", "category", "difficulty", "points", "end_date")},
            },
            "submission": mine,
        })
    return serialize(items)


@router.get("/{challenge_id}")
def get_challenge(challenge_id: str, db: Database = Depends(get_db)):
    return present(db, challenge_or_404(db, challenge_id))


@router.post("", status_code=201)
def create_challenge(payload: ChallengeCreate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    if payload.end_date <= payload.start_date:
        raise HTTPException(status_code=400, detail="End date must be after start date")

    challenge = ChallengeSchema(**payload.model_dump(), created_by=str(user["_id"]))
    challenge_id = create_document("challenge", challenge)
    logger.info("Challenge %s created by %s", challenge_id, user["_id"])
    return present(db, db["challenge"].find_one({"_id": to_oid(challenge_id)}), ("created_by",))


@router.post("/{challenge_id}/participate")
def participate(challenge_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    challenge = challenge_or_404(db, challenge_id)
    user_id = str(user["_id"])

    now = utcnow()
    if now < as_utc(challenge["start_date"]):
        raise HTTPException(status_code=400, detail="Challenge has not started yet")
    if now > as_utc(challenge["end_date"]):
        raise HTTPException(status_code=400, detail="Challenge has ended")
    if not challenge.get("is_active", True):
        raise HTTPException(status_code=400, detail="Challenge is not active")

    participants = challenge.get("participants", [])
    if user_id in participants:
        if any(s.get("participant") == user_id for s in challenge.get("submissions", [])):
            raise HTTPException(status_code=400, detail="Cannot leave challenge after making a submission")

    joined = toggle_member(participants, user_id)
    db["challenge"].update_one(
        {"_id": challenge["_id"]},
        {"$set": {
            "participants": participants,
            "total_participants": len(participants),
            "updated_at": now,
        }},
    )
    return {
        "message": "Joined challenge successfully" if joined else "Left challenge successfully",
        "challenge": present(db, reload(db, challenge), ("participants",)),
        "participating": joined,
    }


@router.post("/{challenge_id}/submit")
def submit(
    challenge_id: str,
    payload: SubmissionCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    challenge = challenge_or_404(db, challenge_id)
    user_id = str(user["_id"])

    if user_id not in challenge.get("participants", []):
        raise HTTPException(status_code=400, detail="You must join the challenge before submitting")

    now = utcnow()
    if now > as_utc(challenge["end_date"]):
        raise HTTPException(status_code=400, detail="Challenge submission deadline has passed")

    submissions = challenge.get("submissions", [])
    existing = next((s for s in submissions if s.get("participant") == user_id), None)

    if existing:
        existing.update({
            "submission_url": payload.submission_url or existing.get("submission_url", ""),
            "demo_url": payload.demo_url or existing.get("demo_url", ""),
            "description": payload.description,
            "files": payload.files if payload.files is not None else existing.get("files", []),
            "submitted_at": now,
        })
    else:
        submission = Submission(
            participant=user_id,
            submission_url=payload.submission_url or "",
            demo_url=payload.demo_url or "",
            description=payload.description,
            files=payload.files or [],
        )
        submissions.append(submission.to_document())

    db["challenge"].update_one(
        {"_id": challenge["_id"]},
        {"$set": {"submissions": submissions, "total_submissions": len(submissions), "updated_at": now}},
    )

    if not existing:
        reputation.award(
            db, [user_id], "challenge_submission", {"kind": "challenge", "id": challenge_id},
            points=reputation.submission_bonus(challenge.get("points", 100)),
        )

    return {
        "message": "Submission updated successfully" if existing else "Submission created successfully",
        "challenge": present(db, reload(db, challenge), ("submissions.participant",)),
    }


@router.post("/{challenge_id}/submissions/{submission_id}/vote")
def vote_submission(
    challenge_id: str,
    submission_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    challenge = challenge_or_404(db, challenge_id)
    submissions = challenge.get("submissions", [])
    submission = find_item(submissions, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")

    user_id = str(user["_id"])
    if submission.get("participant") == user_id:
        raise HTTPException(status_code=400, detail="You cannot vote for your own submission")

    toggle_vote(submission, user_id)
    db["challenge"].update_one({"_id": challenge["_id"]}, {"$set": {"submissions": submissions, "updated_at": utcnow()}})
    return present(db, reload(db, challenge), ("submissions.participant",))


@router.post("/{challenge_id}/winners")
def announce_winners(
    challenge_id: str,
    payload: WinnersAnnouncement,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    challenge = challenge_or_404(db, challenge_id)

    if challenge["created_by"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Not authorized to announce winners")

    if utcnow() < as_utc(challenge["end_date"]):
        raise HTTPException(status_code=400, detail="Cannot announce winners before challenge ends")

    # rank bonuses are paid once per challenge
    if challenge.get("winners"):
        raise HTTPException(status_code=400, detail="Winners have already been announced")

    winners = [Winner(**w.model_dump()).model_dump() for w in payload.winners]
    winner_ids = {w["participant"] for w in winners}
    submissions = challenge.get("submissions", [])
    for submission in submissions:
        submission["is_winner"] = submission.get("participant") in winner_ids

    db["challenge"].update_one(
        {"_id": challenge["_id"]},
        {"$set": {"winners": winners, "submissions": submissions, "updated_at": utcnow()}},
    )

    points = challenge.get("points", 100)
    source = {"kind": "challenge", "id": challenge_id}
    for winner in payload.winners:
        reputation.award(
            db, [winner.participant], "challenge_won", source,
            points=reputation.winner_bonus(points, winner.rank),
        )

    logger.info("Winners announced for challenge %s: %d", challenge_id, len(winners))
    return {
        "message": "Winners announced successfully",
        "challenge": present(db, reload(db, challenge), ("winners.participant",)),
    }


@router.delete("/{challenge_id}")
def delete_challenge(challenge_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    challenge = challenge_or_404(db, challenge_id)

    if challenge["created_by"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Not authorized to delete this challenge")

    if utcnow() >= as_utc(challenge["start_date"]) and challenge.get("participants"):
        raise HTTPException(status_code=400, detail="Cannot delete challenge that has started and has participants")

    db["challenge"].delete_one({"_id": challenge["_id"]})
    return {"message": "Challenge deleted successfully"}
