import re
import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo.database import Database

import reputation
from database import create_document, find_item, find_or_404, get_db, paginate, populate, serialize, to_oid, utcnow
from routers.collaboration_requests import send_request
from schemas import (
    Budget,
    Difficulty,
    Priority,
    Problem as ProblemSchema,
    ProblemCategory,
    ProblemEstimate,
    ProblemStatus,
    ProjectType,
    Solution,
    Supporter,
)
from security import get_current_user
from voting import toggle_vote

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/problems", tags=["problems"])

URL_RE = re.compile(r"^https?://.+\..+")
GITHUB_RE = re.compile(r"^https?://(www\.)?github\.com/[\w\-._]+/[\w\-._]+/?$")

LIST_PATHS = ("author", "supporters.user")
DETAIL_PATHS = ("author", "supporters.user", "collaborators.user", "solutions.author")


def check_url(value: Optional[str]) -> Optional[str]:
    if value and not URL_RE.match(value):
        raise ValueError("must be a valid URL")
    return value


class ProblemFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tags: Optional[List[str]] = None
    difficulty: Optional[Difficulty] = None
    estimated_time: Optional[ProblemEstimate] = None
    priority: Optional[Priority] = None
    budget: Optional[Budget] = None
    deadline: Optional[datetime] = None
    github_repo: Optional[str] = None
    project_links: Optional[List[str]] = None
    additional_resources: Optional[str] = Field(None, max_length=1000)
    project_type: Optional[ProjectType] = None

    @field_validator("github_repo")
    @classmethod
    def valid_github_repo(cls, v):
        if v and not GITHUB_RE.match(v):
            raise ValueError("GitHub repository must be a valid URL")
        return v

    @field_validator("project_links")
    @classmethod
    def valid_project_links(cls, v):
        for link in v or []:
            check_url(link)
        return v


class ProblemCreate(ProblemFields):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=20, max_length=2000)
    category: ProblemCategory
    skills_needed: List[str]


class ProblemUpdate(ProblemFields):
    title: Optional[str] = Field(None, min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=20, max_length=2000)
    category: Optional[ProblemCategory] = None
    skills_needed: Optional[List[str]] = None
    status: Optional[ProblemStatus] = None


class SolutionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=5)
    description: str = Field(..., min_length=20)
    url: Optional[str] = None

    @field_validator("url")
    @classmethod
    def valid_url(cls, v):
        return check_url(v)


class CollaborateRequest(BaseModel):
    message: Optional[str] = Field(None, max_length=500)
    proposed_role: Optional[str] = None


class CompleteRequest(BaseModel):
    completion_notes: Optional[str] = Field(None, max_length=1000)
    acknowledged_collaborators: List[str] = Field(default_factory=list)


def present(db: Database, problem: dict, paths=DETAIL_PATHS) -> dict:
    return serialize(populate(db, problem, *paths))


@router.get("")
def list_problems(
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    status: str = "Open",
    skills: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = "created_at",
    order: Literal["asc", "desc"] = "desc",
    db: Database = Depends(get_db),
):
    query = {}
    if category and category != "All":
        query["category"] = category
    if difficulty and difficulty != "All":
        query["difficulty"] = difficulty
    if status and status != "All":
        query["status"] = status
    if skills:
        query["skills_needed"] = {"$in": [s.strip() for s in skills.split(",") if s.strip()]}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]

    cursor = db["problem"].find(query).sort(sort_by, -1 if order == "desc" else 1)
    problems = [present(db, p, LIST_PATHS) for p in paginate(cursor, page, limit)]
    total = db["problem"].count_documents(query)
    return {
        "problems": problems,
        "total_pages": -(-total // limit),
        "current_page": page,
        "total": total,
    }


@router.get("/user/posted")
def posted_problems(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cursor = db["problem"].find({"author": str(user["_id"])}).sort("created_at", -1)
    problems = [present(db, p, ("author", "collaborators.user", "supporters.user")) for p in cursor]
    return {"problems": problems, "total": len(problems)}


@router.get("/{problem_id}")
def get_problem(problem_id: str, db: Database = Depends(get_db)):
    problem = find_or_404(db, "problem", problem_id, "Problem not found")
    db["problem"].update_one({"_id": problem["_id"]}, {"$inc": {"views": 1}})
    problem["views"] = problem.get("views", 0) + 1
    return present(db, problem)


@router.post("", status_code=201)
def create_problem(payload: ProblemCreate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    problem = ProblemSchema(**payload.model_dump(exclude_none=True), author=user_id)
    problem_id = create_document("problem", problem)

    reputation.award(db, [user_id], "problem_posted", {"kind": "problem", "id": problem_id})

    logger.info("Problem %s posted by %s", problem_id, user_id)
    doc = db["problem"].find_one({"_id": to_oid(problem_id)})
    return present(db, doc, ("author",))


@router.put("/{problem_id}")
def update_problem(
    problem_id: str,
    payload: ProblemUpdate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    problem = find_or_404(db, "problem", problem_id, "Problem not found")
    if problem["author"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Not authorized to update this problem")

    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    db["problem"].update_one({"_id": problem["_id"]}, {"$set": {**updates, "updated_at": utcnow()}})
    return present(db, db["problem"].find_one({"_id": problem["_id"]}), ("author",))


@router.post("/{problem_id}/support")
def support_problem(problem_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    problem = find_or_404(db, "problem", problem_id, "Problem not found")
    user_id = str(user["_id"])

    supporters = problem.get("supporters", [])
    if any(s["user"] == user_id for s in supporters):
        supporters = [s for s in supporters if s["user"] != user_id]
    else:
        supporters.append(Supporter(user=user_id).to_document())

    db["problem"].update_one({"_id": problem["_id"]}, {"$set": {"supporters": supporters, "updated_at": utcnow()}})
    return present(db, db["problem"].find_one({"_id": problem["_id"]}), LIST_PATHS)


@router.post("/{problem_id}/solutions")
def submit_solution(
    problem_id: str,
    payload: SolutionCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    problem = find_or_404(db, "problem", problem_id, "Problem not found")
    user_id = str(user["_id"])

    solution = Solution(author=user_id, title=payload.title, description=payload.description, url=payload.url or "")
    db["problem"].update_one(
        {"_id": problem["_id"]},
        {"$push": {"solutions": solution.to_document()}, "$set": {"updated_at": utcnow()}},
    )

    reputation.award(db, [user_id], "solution_submitted", {"kind": "problem", "id": str(problem["_id"])})

    return present(db, db["problem"].find_one({"_id": problem["_id"]}), ("solutions.author",))


@router.post("/{problem_id}/solutions/{solution_id}/vote")
def vote_solution(
    problem_id: str,
    solution_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    problem = find_or_404(db, "problem", problem_id, "Problem not found")
    solutions = problem.get("solutions", [])
    solution = find_item(solutions, solution_id)
    if not solution:
        raise HTTPException(status_code=404, detail="Solution not found")

    # solution authors may vote for themselves; challenge submissions block this
    toggle_vote(solution, str(user["_id"]))

    db["problem"].update_one({"_id": problem["_id"]}, {"$set": {"solutions": solutions, "updated_at": utcnow()}})
    return present(db, db["problem"].find_one({"_id": problem["_id"]}), ("solutions.author",))


@router.post("/{problem_id}/collaborate")
def collaborate(
    problem_id: str,
    payload: CollaborateRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Older entry point for sending a collaboration request."""
    request = send_request(db, problem_id, user, payload.message, payload.proposed_role)
    return {
        "message": "Collaboration request sent successfully! The problem author will review your request.",
        "request_id": str(request["_id"]),
    }


@router.put("/{problem_id}/complete")
def complete_problem(
    problem_id: str,
    payload: CompleteRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    problem = find_or_404(db, "problem", problem_id, "Problem not found")
    user_id = str(user["_id"])

    if problem["author"] != user_id:
        raise HTTPException(status_code=403, detail="Only the problem author can mark it as completed")

    if problem.get("status") == "Completed":
        raise HTTPException(status_code=400, detail="Problem is already marked as completed")

    acknowledged = set(payload.acknowledged_collaborators)
    collaborators = problem.get("collaborators", [])
    rewarded = []
    for collaborator in collaborators:
        if collaborator["user"] in acknowledged:
            collaborator["is_acknowledged"] = True
            rewarded.append(collaborator["user"])

    now = utcnow()
    db["problem"].update_one(
        {"_id": problem["_id"]},
        {"$set": {
            "status": "Completed",
            "completed_at": now,
            "completion_notes": payload.completion_notes or "",
            "collaborators": collaborators,
            "updated_at": now,
        }},
    )

    source = {"kind": "problem", "id": str(problem["_id"])}
    reputation.award(db, [user_id], "problem_completed", source)
    reputation.award(db, rewarded, "collaborator_acknowledged", source)

    logger.info("Problem %s completed, %d collaborator(s) acknowledged", problem_id, len(rewarded))
    updated = db["problem"].find_one({"_id": problem["_id"]})
    return {
        "message": "Problem marked as completed successfully",
        "problem": present(db, updated, ("author", "collaborators.user", "supporters.user")),
    }


@router.delete("/{problem_id}")
def delete_problem(problem_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    problem = find_or_404(db, "problem", problem_id, "Problem not found")
    if problem["author"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Not authorized to delete this problem")

    db["problem"].delete_one({"_id": problem["_id"]})
    return {"message": "Problem deleted successfully"}
