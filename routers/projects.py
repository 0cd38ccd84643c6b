import re
import logging
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo.database import Database

import reputation
from database import create_document, find_item, find_or_404, get_db, paginate, populate, serialize, to_oid, utcnow
from realtime import broadcast, project_room
from schemas import (
    Difficulty,
    JoinRequest,
    Member,
    MessageType,
    Milestone,
    MilestoneStatus,
    Project as ProjectSchema,
    ProjectCategory,
    ProjectDuration,
    ProjectMessage,
    ProjectStatus,
    Task,
    TaskPriority,
    TaskStatus,
    Visibility,
)
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])

DETAIL_PATHS = (
    "owner", "members.user", "join_requests.user", "tasks.assigned_to",
    "tasks.created_by", "messages.author", "likes",
)
TASK_PATHS = ("tasks.assigned_to", "tasks.created_by")
# null clears these; any other null in a partial update is ignored
CLEARABLE_FIELDS = ("assigned_to", "due_date")


def check_user_id(v: Optional[str]) -> Optional[str]:
    if v is not None and not ObjectId.is_valid(v):
        raise ValueError("Invalid user ID")
    return v


def partial_update(payload: BaseModel) -> dict:
    return {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in CLEARABLE_FIELDS
    }


class ProjectFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tags: Optional[List[str]] = None
    difficulty: Optional[Difficulty] = None
    duration: Optional[ProjectDuration] = None
    status: Optional[ProjectStatus] = None
    visibility: Optional[Visibility] = None
    max_members: Optional[int] = Field(None, ge=1, le=50)
    repository: Optional[dict] = None
    demo_url: Optional[str] = None
    documentation: Optional[str] = None


class ProjectCreate(ProjectFields):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=20, max_length=2000)
    category: ProjectCategory
    skills_needed: List[str]


class ProjectUpdate(ProjectFields):
    title: Optional[str] = Field(None, min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=20, max_length=2000)
    category: Optional[ProjectCategory] = None
    skills_needed: Optional[List[str]] = None


class JoinCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    message: str = ""
    skills: List[str] = Field(default_factory=list)


class JoinDecision(BaseModel):
    action: Literal["accept", "reject"]


class TaskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    assigned_to: Optional[str] = None
    priority: TaskPriority = "Medium"
    due_date: Optional[datetime] = None

    @field_validator("assigned_to")
    @classmethod
    def valid_assignee(cls, v):
        return check_user_id(v)


class TaskUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None

    @field_validator("assigned_to")
    @classmethod
    def valid_assignee(cls, v):
        return check_user_id(v)


class MilestoneCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    due_date: Optional[datetime] = None


class MilestoneUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    status: Optional[MilestoneStatus] = None


class MessageCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=1)
    type: MessageType = "text"
    attachments: List[dict] = Field(default_factory=list)


def project_or_404(db: Database, project_id: str) -> dict:
    return find_or_404(db, "project", project_id, "Project not found")


def membership(project: dict, user_id: str) -> Optional[dict]:
    return next((m for m in project.get("members", []) if m.get("user") == user_id), None)


def require_member(project: dict, user: dict, detail: str) -> str:
    user_id = str(user["_id"])
    if membership(project, user_id) is None:
        raise HTTPException(status_code=403, detail=detail)
    return user_id


def present(db: Database, project: dict, paths=DETAIL_PATHS) -> dict:
    return serialize(populate(db, project, *paths))


def reload(db: Database, project: dict) -> dict:
    return db["project"].find_one({"_id": project["_id"]})


@router.get("")
def list_projects(
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    status: Optional[str] = None,
    skills: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = "created_at",
    order: Literal["asc", "desc"] = "desc",
    db: Database = Depends(get_db),
):
    query = {"visibility": "Public"}
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

    cursor = db["project"].find(query).sort(sort_by, -1 if order == "desc" else 1)
    projects = [present(db, p, ("owner", "members.user")) for p in paginate(cursor, page, limit)]
    total = db["project"].count_documents(query)
    return {"projects": projects, "total_pages": -(-total // limit), "current_page": page, "total": total}


@router.get("/join-requests/received")
def received_join_requests(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    requests = []
    for project in db["project"].find({"owner": str(user["_id"])}):
        populate(db, project, "join_requests.user", fields=("name", "avatar", "skills", "email"))
        for request in project.get("join_requests", []):
            requests.append({
                **request,
                "project": {"id": str(project["_id"]), "title": project["title"]},
            })
    requests.sort(key=lambda r: r["requested_at"], reverse=True)
    return {"requests": serialize(requests)}


@router.get("/join-requests/sent")
def sent_join_requests(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    requests = []
    for project in db["project"].find({"join_requests.user": user_id}):
        populate(db, project, "owner", fields=("name", "avatar"))
        for request in project.get("join_requests", []):
            if request.get("user") != user_id:
                continue
            requests.append({
                **{k: v for k, v in request.items() if k != "user"},
                "project": {"id": str(project["_id"]), "title": project["title"], "owner": project["owner"]},
            })
    requests.sort(key=lambda r: r["requested_at"], reverse=True)
    return {"requests": serialize(requests)}


@router.get("/{project_id}")
def get_project(project_id: str, db: Database = Depends(get_db)):
    project = project_or_404(db, project_id)
    db["project"].update_one({"_id": project["_id"]}, {"$inc": {"views": 1}})
    project["views"] = project.get("views", 0) + 1
    return present(db, project)


@router.post("", status_code=201)
def create_project(payload: ProjectCreate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    user_id = str(user["_id"])
    project = ProjectSchema(
        **payload.model_dump(exclude_none=True),
        owner=user_id,
        members=[Member(user=user_id, role="Owner").to_document()],
    )
    project_id = create_document("project", project)

    reputation.award(db, [user_id], "project_created", {"kind": "project", "id": project_id})

    logger.info("Project %s created by %s", project_id, user_id)
    doc = db["project"].find_one({"_id": to_oid(project_id)})
    return present(db, doc, ("owner", "members.user"))


@router.put("/{project_id}")
def update_project(
    project_id: str,
    payload: ProjectUpdate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    project = project_or_404(db, project_id)
    if project["owner"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Not authorized to update this project")

    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    db["project"].update_one({"_id": project["_id"]}, {"$set": {**updates, "updated_at": utcnow()}})

    data = present(db, reload(db, project), ("owner", "members.user"))
    broadcast("project-updated", {"project_id": project_id, "project": data}, project_room(project_id))
    return data


@router.post("/{project_id}/join")
def request_to_join(
    project_id: str,
    payload: JoinCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    project = project_or_404(db, project_id)
    user_id = str(user["_id"])

    if membership(project, user_id) is not None:
        raise HTTPException(status_code=400, detail="You are already a member of this project")

    pending = any(
        r.get("user") == user_id and r.get("status") == "Pending"
        for r in project.get("join_requests", [])
    )
    if pending:
        raise HTTPException(status_code=400, detail="You already have a pending join request")

    if len(project.get("members", [])) >= project.get("max_members", 10):
        raise HTTPException(status_code=400, detail="Project has reached maximum member limit")

    request = JoinRequest(user=user_id, message=payload.message, skills=payload.skills)
    db["project"].update_one(
        {"_id": project["_id"]},
        {"$push": {"join_requests": request.to_document()}, "$set": {"updated_at": utcnow()}},
    )
    return present(db, reload(db, project), ("join_requests.user",))


@router.put("/{project_id}/join-requests/{request_id}")
def respond_to_join_request(
    project_id: str,
    request_id: str,
    payload: JoinDecision,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    project = project_or_404(db, project_id)
    user_id = str(user["_id"])

    member = membership(project, user_id)
    is_owner = project["owner"] == user_id
    is_admin = member is not None and member.get("role") in ("Owner", "Admin")
    if not is_owner and not is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to manage join requests")

    join_requests = project.get("join_requests", [])
    request = find_item(join_requests, request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Join request not found")

    if request.get("status") != "Pending":
        raise HTTPException(status_code=400, detail="This join request has already been handled")

    members = project.get("members", [])
    if payload.action == "accept" and membership(project, request["user"]) is None:
        members.append(Member(user=request["user"], skills=request.get("skills", [])).to_document())

    request["status"] = "Accepted" if payload.action == "accept" else "Rejected"
    db["project"].update_one(
        {"_id": project["_id"]},
        {"$set": {"members": members, "join_requests": join_requests, "updated_at": utcnow()}},
    )

    if payload.action == "accept":
        reputation.award(db, [request["user"]], "project_joined", {"kind": "project", "id": project_id})

    return present(db, reload(db, project), ("members.user", "join_requests.user"))


@router.post("/{project_id}/tasks")
def create_task(
    project_id: str,
    payload: TaskCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    project = project_or_404(db, project_id)
    user_id = require_member(project, user, "Only project members can create tasks")

    task = Task(**payload.model_dump(), created_by=user_id)
    db["project"].update_one(
        {"_id": project["_id"]},
        {"$push": {"tasks": task.to_document()}, "$set": {"updated_at": utcnow()}},
    )
    return present(db, reload(db, project), TASK_PATHS)


@router.put("/{project_id}/tasks/{task_id}")
def update_task(
    project_id: str,
    task_id: str,
    payload: TaskUpdate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    project = project_or_404(db, project_id)
    require_member(project, user, "Only project members can update tasks")

    tasks = project.get("tasks", [])
    task = find_item(tasks, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")

    task.update(partial_update(payload))
    task["updated_at"] = utcnow()
    db["project"].update_one({"_id": project["_id"]}, {"$set": {"tasks": tasks, "updated_at": utcnow()}})

    broadcast("task-updated", {"project_id": project_id, "task": serialize(task)}, project_room(project_id))
    return present(db, reload(db, project), TASK_PATHS)


@router.post("/{project_id}/milestones")
def create_milestone(
    project_id: str,
    payload: MilestoneCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    project = project_or_404(db, project_id)
    require_member(project, user, "Only project members can manage milestones")

    milestone = Milestone(**payload.model_dump())
    db["project"].update_one(
        {"_id": project["_id"]},
        {"$push": {"milestones": milestone.to_document()}, "$set": {"updated_at": utcnow()}},
    )
    return present(db, reload(db, project), ())


@router.put("/{project_id}/milestones/{milestone_id}")
def update_milestone(
    project_id: str,
    milestone_id: str,
    payload: MilestoneUpdate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    project = project_or_404(db, project_id)
    require_member(project, user, "Only project members can manage milestones")

    milestones = project.get("milestones", [])
    milestone = find_item(milestones, milestone_id)
    if not milestone:
        raise HTTPException(status_code=404, detail="Milestone not found")

    updates = partial_update(payload)
    if updates.get("status") == "Completed" and milestone.get("status") != "Completed":
        updates["completed_at"] = utcnow()
    elif updates.get("status") == "Pending":
        updates["completed_at"] = None
    milestone.update(updates)

    db["project"].update_one({"_id": project["_id"]}, {"$set": {"milestones": milestones, "updated_at": utcnow()}})
    return present(db, reload(db, project), ())


@router.post("/{project_id}/messages")
def send_message(
    project_id: str,
    payload: MessageCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    project = project_or_404(db, project_id)
    user_id = str(user["_id"])
    if membership(project, user_id) is None and project["owner"] != user_id:
        raise HTTPException(status_code=403, detail="Only project members and owner can send messages")

    message = ProjectMessage(author=user_id, **payload.model_dump()).to_document()
    db["project"].update_one({"_id": project["_id"]}, {"$push": {"messages": message}})

    data = serialize(populate(db, message, "author", fields=("name", "avatar")))
    broadcast("new-message", {"project_id": project_id, "message": data}, project_room(project_id))
    return {"message": data}


@router.get("/{project_id}/messages")
def list_messages(project_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    project = project_or_404(db, project_id)
    user_id = str(user["_id"])
    if membership(project, user_id) is None and project["owner"] != user_id:
        raise HTTPException(status_code=403, detail="Not authorized to view project messages")

    populate(db, project, "messages.author", fields=("name", "avatar"))
    return {"messages": serialize(project.get("messages", []))}


@router.post("/{project_id}/like")
def like_project(project_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    project = project_or_404(db, project_id)
    user_id = str(user["_id"])

    if user_id in project.get("likes", []):
        db["project"].update_one({"_id": project["_id"]}, {"$pull": {"likes": user_id}})
    else:
        db["project"].update_one({"_id": project["_id"]}, {"$addToSet": {"likes": user_id}})
    return present(db, reload(db, project), ("likes",))


@router.delete("/{project_id}")
def delete_project(project_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    project = project_or_404(db, project_id)
    if project["owner"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Not authorized to delete this project")

    db["project"].delete_one({"_id": project["_id"]})
    return {"message": "Project deleted successfully"}
