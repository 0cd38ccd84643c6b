import re
import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database

import reputation
from database import as_utc, find_or_404, get_db, paginate, populate, serialize, to_oid, utcnow
from schemas import PortfolioItem, Preferences, SkillLevel
from security import get_current_user, public_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

PROFILE_FIELDS = ("name", "bio", "location", "avatar", "social_links", "education", "experience", "preferences")


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=2)
    bio: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = None
    avatar: Optional[str] = None
    social_links: Optional[dict] = None
    education: Optional[List[dict]] = None
    experience: Optional[List[dict]] = None
    preferences: Optional[Preferences] = None


class SkillInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    level: SkillLevel


class SkillsUpdate(BaseModel):
    skills: List[SkillInput]


class PortfolioCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    url: str = Field("", pattern=r"^$|^https?://.+\..+")
    image: str = ""
    tags: List[str] = Field(default_factory=list)


def user_or_404(db: Database, user_id: str) -> dict:
    return find_or_404(db, "user", user_id, "User not found")


def refreshed(db: Database, user: dict) -> dict:
    return public_user(db["user"].find_one({"_id": user["_id"]}))


@router.get("/profile/{user_id}")
def get_profile(user_id: str, db: Database = Depends(get_db)):
    user = user_or_404(db, user_id)
    populate(db, user, "followers", "following", fields=("name", "avatar"))
    return public_user(user)


@router.put("/profile")
def update_profile(payload: ProfileUpdate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    updates = {k: v for k, v in payload.model_dump(exclude_unset=True, exclude_none=True).items() if k in PROFILE_FIELDS}
    db["user"].update_one({"_id": user["_id"]}, {"$set": {**updates, "updated_at": utcnow()}})
    return refreshed(db, user)


@router.post("/skills")
def update_skills(payload: SkillsUpdate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    # endorsements survive for skills that keep their name
    endorsements = {s["name"]: s.get("endorsements", 0) for s in user.get("skills", [])}
    skills = [
        {"name": s.name, "level": s.level, "endorsements": endorsements.get(s.name, 0)}
        for s in payload.skills
    ]
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"skills": skills, "updated_at": utcnow()}})
    return refreshed(db, user)


@router.post("/portfolio")
def add_portfolio_item(payload: PortfolioCreate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    item = PortfolioItem(**payload.model_dump())
    db["user"].update_one({"_id": user["_id"]}, {"$push": {"portfolio": item.to_document()}})
    return refreshed(db, user)


@router.delete("/portfolio/{item_id}")
def delete_portfolio_item(item_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$pull": {"portfolio": {"_id": to_oid(item_id, "Portfolio item not found")}}},
    )
    return refreshed(db, user)


@router.post("/follow/{user_id}")
def follow_user(user_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    me = str(user["_id"])
    if user_id == me:
        raise HTTPException(status_code=400, detail="You cannot follow yourself")

    target = user_or_404(db, user_id)

    if user_id in user.get("following", []):
        db["user"].update_one({"_id": user["_id"]}, {"$pull": {"following": user_id}})
        db["user"].update_one({"_id": target["_id"]}, {"$pull": {"followers": me}})
        return {"message": "User unfollowed successfully", "following": False}

    db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"following": user_id}})
    db["user"].update_one({"_id": target["_id"]}, {"$addToSet": {"followers": me}})
    return {"message": "User followed successfully", "following": True}


@router.get("/search")
def search_users(
    q: Optional[str] = None,
    skills: Optional[str] = None,
    location: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Database = Depends(get_db),
):
    query = {}
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"bio": {"$regex": pattern, "$options": "i"}},
            {"skills.name": {"$regex": pattern, "$options": "i"}},
        ]
    if skills:
        query["skills.name"] = {"$in": [s.strip() for s in skills.split(",") if s.strip()]}
    if location:
        query["location"] = {"$regex": re.escape(location), "$options": "i"}

    cursor = db["user"].find(query).sort("reputation.score", -1)
    users = [public_user(u) for u in paginate(cursor, page, limit)]
    total = db["user"].count_documents(query)
    return {"users": users, "total_pages": -(-total // limit), "current_page": page, "total": total}


@router.get("/recommendations")
def recommendations(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    skill_names = [s["name"] for s in user.get("skills", [])]
    interests = user.get("preferences", {}).get("interests", [])

    query = {
        "_id": {"$ne": user["_id"]},
        "$or": [
            {"skills.name": {"$in": skill_names}},
            {"preferences.interests": {"$in": interests}},
            {"preferences.looking_for_collaboration": True},
        ],
    }
    cursor = db["user"].find(query).sort("reputation.score", -1).limit(10)
    return [public_user(u) for u in cursor]


@router.post("/endorse/{user_id}/skill/{skill_name}")
def endorse_skill(
    user_id: str,
    skill_name: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if user_id == str(user["_id"]):
        raise HTTPException(status_code=400, detail="You cannot endorse yourself")

    result = db["user"].update_one(
        {"_id": to_oid(user_id, "User or skill not found"), "skills.name": skill_name},
        {"$inc": {"skills.$.endorsements": 1}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="User or skill not found")

    return {"message": "Skill endorsed successfully", "user": public_user(db["user"].find_one({"_id": ObjectId(user_id)}))}


@router.get("/leaderboard")
def get_leaderboard(limit: int = Query(50, ge=1, le=100), db: Database = Depends(get_db)):
    return {"items": reputation.leaderboard(db, limit)}


@router.get("/{user_id}/reputation")
def get_reputation(user_id: str, limit: int = Query(50, ge=1, le=200), db: Database = Depends(get_db)):
    user = user_or_404(db, user_id)
    events = reputation.history(db, str(user["_id"]), limit)
    return {"reputation": serialize(user.get("reputation", {})), "events": serialize(events)}


@router.get("/{user_id}/collaborations")
def user_collaborations(user_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    paths = ("author", "collaborators.user")
    fields = ("name", "email", "avatar")

    def summary(problem: dict) -> dict:
        populate(db, problem, *paths, fields=fields)
        keys = ("title", "description", "category", "difficulty", "status", "author", "collaborators")
        return serialize({"_id": problem["_id"], **{k: problem.get(k) for k in keys}})

    items = []
    for problem in db["problem"].find({"author": user_id}):
        if not problem.get("collaborators"):
            continue
        items.append({
            "id": f"{problem['_id']}_{user_id}_author",
            "problem": summary(problem),
            "role": "Project Owner",
            "joined_at": problem.get("created_at"),
            "is_active": True,
            "is_owner": True,
        })

    for problem in db["problem"].find({"collaborators.user": user_id}):
        mine = next((c for c in problem.get("collaborators", []) if c.get("user") == user_id), None)
        if mine is None:
            continue
        items.append({
            "id": f"{problem['_id']}_{user_id}_collaborator",
            "problem": summary(problem),
            "role": mine.get("role"),
            "joined_at": mine.get("joined_at"),
            "is_active": mine.get("is_active", True) is not False,
            "is_owner": False,
        })

    items.sort(key=lambda c: as_utc(c["joined_at"]) or utcnow(), reverse=True)
    return {"collaborations": serialize(items)}
