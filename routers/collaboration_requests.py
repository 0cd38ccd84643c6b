import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, find_or_404, get_db, id_filter, populate, serialize, to_oid, utcnow
from schemas import Collaborator, CollaborationRequest as CollaborationRequestSchema
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/collaboration-requests", tags=["collaboration-requests"])

ALREADY_SENT = "You have already sent a collaboration request for this problem"
PROBLEM_SUMMARY_FIELDS = ("title", "description", "category", "difficulty", "status")

StatusFilter = Literal["pending", "accepted", "rejected", "all"]


class CollaborationRequestCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    problem_id: str
    message: Optional[str] = Field(None, max_length=500)
    proposed_role: Optional[str] = Field(None, max_length=100)


class RespondRequest(BaseModel):
    status: str
    response_message: Optional[str] = Field(None, max_length=500)


def is_collaborator(problem: dict, user_id: str) -> bool:
    return any(c.get("user") == user_id for c in problem.get("collaborators", []))


def send_request(
    db: Database,
    problem_id: str,
    user: dict,
    message: Optional[str] = None,
    proposed_role: Optional[str] = None,
) -> dict:
    """Create a pending request from `user` to the author of `problem_id`."""
    problem = find_or_404(db, "problem", problem_id, "Problem not found")
    user_id = str(user["_id"])
    problem_id = str(problem["_id"])

    if problem["author"] == user_id:
        raise HTTPException(status_code=400, detail="You cannot send a collaboration request to yourself")

    existing = db["collaboration_request"].find_one({"problem": problem_id, "requester": user_id})
    if existing:
        raise HTTPException(
            status_code=400,
            detail={"message": ALREADY_SENT, "existing_request": serialize(existing)},
        )

    if is_collaborator(problem, user_id):
        raise HTTPException(status_code=400, detail="You are already a collaborator on this problem")

    request = CollaborationRequestSchema(
        problem=problem_id,
        requester=user_id,
        problem_author=problem["author"],
        message=message or "I would like to collaborate on this problem.",
        proposed_role=proposed_role or "Collaborator",
    )
    try:
        request_id = create_document("collaboration_request", request)
    except DuplicateKeyError:
        # lost a race with a concurrent identical request
        raise HTTPException(status_code=400, detail=ALREADY_SENT)

    logger.info("Collaboration request %s: user %s -> problem %s", request_id, user_id, problem_id)
    return db["collaboration_request"].find_one({"_id": to_oid(request_id)})


def add_collaborator(db: Database, problem_id: str, user_id: str, role: str) -> bool:
    """Push a collaborator entry unless the user is already listed. Returns True if added."""
    collaborator = Collaborator(user=user_id, role=role)
    result = db["problem"].update_one(
        {"_id": to_oid(problem_id, "Problem not found"), "collaborators.user": {"$ne": user_id}},
        {"$push": {"collaborators": collaborator.to_document()}, "$set": {"updated_at": utcnow()}},
    )
    if result.modified_count == 0:
        logger.warning("Collaborator %s not added to problem %s (already present or problem gone)", user_id, problem_id)
    return result.modified_count == 1


def present(db: Database, requests: List[dict], *user_paths: str) -> List[dict]:
    problems = {
        str(p["_id"]): {"id": str(p["_id"]), **{f: p.get(f) for f in PROBLEM_SUMMARY_FIELDS}}
        for p in db["problem"].find(id_filter(r["problem"] for r in requests))
    }
    out = []
    for r in requests:
        populate(db, r, *user_paths, fields=("name", "email", "avatar"))
        r["problem"] = problems.get(r["problem"], r["problem"])
        out.append(serialize(r))
    return out


@router.post("", status_code=201)
def create_request(
    payload: CollaborationRequestCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    request = send_request(db, payload.problem_id, user, payload.message, payload.proposed_role)
    return {
        "message": "Collaboration request sent successfully",
        "collaboration_request": present(db, [request], "requester", "problem_author")[0],
    }


@router.get("/received")
def received_requests(
    status: StatusFilter = Query("pending"),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    query = {"problem_author": str(user["_id"])}
    if status != "all":
        query["status"] = status
    requests = list(db["collaboration_request"].find(query).sort("requested_at", -1))
    return {"requests": present(db, requests, "requester")}


@router.get("/sent")
def sent_requests(
    status: StatusFilter = Query("all"),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    query = {"requester": str(user["_id"])}
    if status != "all":
        query["status"] = status
    requests = list(db["collaboration_request"].find(query).sort("requested_at", -1))
    return {"requests": present(db, requests, "problem_author")}


@router.get("/stats")
def request_stats(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])

    def counts(match: dict) -> dict:
        pipeline = [
            {"$match": match},
            {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        ]
        result = {"pending": 0, "accepted": 0, "rejected": 0}
        for row in db["collaboration_request"].aggregate(pipeline):
            result[row["_id"]] = row["count"]
        return result

    return {
        "received": counts({"problem_author": user_id}),
        "sent": counts({"requester": user_id}),
    }


@router.put("/{request_id}/respond")
def respond_to_request(
    request_id: str,
    payload: RespondRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if payload.status not in ("accepted", "rejected"):
        raise HTTPException(status_code=400, detail='Status must be either "accepted" or "rejected"')

    request = find_or_404(db, "collaboration_request", request_id, "Collaboration request not found")

    if request["problem_author"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="You can only respond to requests for your own problems")

    if request["status"] != "pending":
        raise HTTPException(status_code=400, detail="This request has already been responded to")

    now = utcnow()
    updated = db["collaboration_request"].find_one_and_update(
        {"_id": request["_id"], "status": "pending"},
        {"$set": {
            "status": payload.status,
            "responded_at": now,
            "response_message": payload.response_message or "",
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="This request has already been responded to")

    # second write is not atomic with the first; see DESIGN.md
    if payload.status == "accepted":
        add_collaborator(db, updated["problem"], updated["requester"], updated["proposed_role"])

    logger.info("Collaboration request %s %s", request_id, payload.status)
    return {
        "message": f"Collaboration request {payload.status} successfully",
        "collaboration_request": present(db, [updated], "requester", "problem_author")[0],
    }


@router.delete("/{request_id}")
def cancel_request(request_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    request = find_or_404(db, "collaboration_request", request_id, "Collaboration request not found")

    if request["requester"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="You can only cancel your own requests")

    if request["status"] != "pending":
        raise HTTPException(status_code=400, detail="You can only cancel pending requests")

    db["collaboration_request"].delete_one({"_id": request["_id"]})
    return {"message": "Collaboration request cancelled successfully"}
