import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.database import Database

from database import create_document, find_or_404, get_db, populate, serialize, to_oid, utcnow
from realtime import broadcast, collaboration_room, problem_id_of
from routers.collaboration_requests import is_collaborator
from schemas import CollaborationMessage as CollaborationMessageSchema
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/collaborations", tags=["collaborations"])

SENDER_FIELDS = ("name", "email", "avatar")


class MessageCreate(BaseModel):
    message: str = Field(..., max_length=1000)


def collaboration_problem(db: Database, collaboration_id: str, user: dict) -> dict:
    """Problem behind a collaboration id, if the user is its author or a collaborator."""
    problem = find_or_404(db, "problem", problem_id_of(collaboration_id), "Problem not found")
    user_id = str(user["_id"])
    if problem["author"] != user_id and not is_collaborator(problem, user_id):
        raise HTTPException(status_code=403, detail="Access denied")
    return problem


def message_content(payload: MessageCreate) -> str:
    content = payload.message.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content is required")
    return content


@router.get("/{collaboration_id}/messages")
def list_messages(collaboration_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    problem = collaboration_problem(db, collaboration_id, user)
    cursor = db["collaboration_message"].find({"problem": str(problem["_id"])}).sort("created_at", 1)
    messages = [serialize(populate(db, m, "sender", fields=SENDER_FIELDS)) for m in cursor]
    return {"messages": messages}


@router.post("/{collaboration_id}/messages", status_code=201)
def send_message(
    collaboration_id: str,
    payload: MessageCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    content = message_content(payload)
    problem = collaboration_problem(db, collaboration_id, user)

    message = CollaborationMessageSchema(problem=str(problem["_id"]), sender=str(user["_id"]), content=content)
    message_id = create_document("collaboration_message", message)
    doc = db["collaboration_message"].find_one({"_id": to_oid(message_id)})
    data = serialize(populate(db, doc, "sender", fields=SENDER_FIELDS))

    broadcast(
        "new-collaboration-message",
        {"collaboration_id": collaboration_id, "message": data},
        collaboration_room(collaboration_id),
    )
    return {"message": data}


@router.put("/{collaboration_id}/messages/{message_id}")
def edit_message(
    collaboration_id: str,
    message_id: str,
    payload: MessageCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    content = message_content(payload)
    problem = collaboration_problem(db, collaboration_id, user)
    message = find_or_404(db, "collaboration_message", message_id, "Message not found")

    if message["problem"] != str(problem["_id"]):
        raise HTTPException(status_code=404, detail="Message not found")
    if message["sender"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="You can only edit your own messages")

    now = utcnow()
    db["collaboration_message"].update_one(
        {"_id": message["_id"]},
        {"$set": {"content": content, "is_edited": True, "edited_at": now, "updated_at": now}},
    )
    doc = db["collaboration_message"].find_one({"_id": message["_id"]})
    return {"message": serialize(populate(db, doc, "sender", fields=SENDER_FIELDS))}
