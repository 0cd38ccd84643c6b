"""
Database Schemas for SkillSync

Define MongoDB collection schemas using Pydantic models.
Each model name maps to a collection with the snake_case name.
- User -> "user"
- Session -> "session"
- Problem -> "problem"
- CollaborationRequest -> "collaboration_request"
- CollaborationMessage -> "collaboration_message"
- Project -> "project"
- Challenge -> "challenge"
- ReputationEvent -> "reputation_event"

User references are stored as string ids. Embedded array items get their own
ObjectId under "_id" so routes can address them.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


SkillLevel = Literal["Beginner", "Intermediate", "Advanced", "Expert"]
Difficulty = Literal["Beginner", "Intermediate", "Advanced"]
WorkStyle = Literal["Remote", "In-person", "Hybrid"]

ProblemCategory = Literal[
    "Technology", "Education", "Healthcare", "Environment", "Social Impact",
    "Business", "Agriculture", "Infrastructure", "Arts & Culture", "Other",
]
ProblemStatus = Literal["Open", "In Progress", "Solved", "Closed", "Completed"]
ProblemEstimate = Literal["1-2 hours", "1-3 days", "1-2 weeks", "1+ months"]
Priority = Literal["Low", "Medium", "High", "Critical"]
ProjectType = Literal["New Project", "Existing Project", "Open Source", "Research", "Prototype"]
BudgetType = Literal["Fixed", "Hourly", "Equity", "Volunteer"]

RequestStatus = Literal["pending", "accepted", "rejected"]

ProjectCategory = Literal[
    "Web Development", "Mobile App", "AI/ML", "Data Science", "Design",
    "Game Development", "Blockchain", "IoT", "Research", "Open Source", "Startup", "Other",
]
ProjectStatus = Literal["Planning", "Active", "On Hold", "Completed", "Cancelled"]
ProjectDuration = Literal["1-2 weeks", "1-2 months", "3-6 months", "6+ months"]
Visibility = Literal["Public", "Private", "Invite Only"]
MemberRole = Literal["Owner", "Admin", "Member"]
JoinRequestStatus = Literal["Pending", "Accepted", "Rejected"]
TaskStatus = Literal["Todo", "In Progress", "Review", "Done"]
TaskPriority = Literal["Low", "Medium", "High"]
MilestoneStatus = Literal["Pending", "Completed"]
MessageType = Literal["text", "file", "image"]

ChallengeCategory = Literal[
    "Frontend Development", "Backend Development", "Full Stack", "Mobile Development",
    "UI/UX Design", "Data Science", "Machine Learning", "DevOps", "Problem Solving",
    "Algorithm", "Database Design", "Other",
]
ChallengeEstimate = Literal["1-2 hours", "3-5 hours", "1-2 days", "3-7 days"]


class Embedded(BaseModel):
    """Base for array items stored inside a parent document."""
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: ObjectId = Field(default_factory=ObjectId, alias="_id")

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


# Users

class Skill(BaseModel):
    name: str
    level: SkillLevel = "Beginner"
    endorsements: int = Field(0, ge=0)


class PortfolioItem(Embedded):
    title: str
    description: str = ""
    url: str = ""
    image: str = ""
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)


class Reputation(BaseModel):
    score: int = Field(0, ge=0, description="Total reputation points")
    badges: List[str] = Field(default_factory=list)
    completed_challenges: int = Field(0, ge=0)
    project_contributions: int = Field(0, ge=0)


class Preferences(BaseModel):
    looking_for_collaboration: bool = True
    available_for_mentoring: bool = False
    interests: List[str] = Field(default_factory=list)
    work_style: WorkStyle = "Remote"


class User(BaseModel):
    name: str = Field(..., description="Display name")
    email: EmailStr
    password_hash: str = Field(..., description="Salted SHA256 password hash")
    password_salt: str
    avatar: str = ""
    bio: str = Field("", max_length=500)
    location: str = ""
    skills: List[Skill] = Field(default_factory=list)
    portfolio: List[dict] = Field(default_factory=list)
    social_links: dict = Field(default_factory=dict, description="github, linkedin, website, twitter")
    education: List[dict] = Field(default_factory=list)
    experience: List[dict] = Field(default_factory=list)
    reputation: Reputation = Field(default_factory=Reputation)
    preferences: Preferences = Field(default_factory=Preferences)
    following: List[str] = Field(default_factory=list)
    followers: List[str] = Field(default_factory=list)
    is_verified: bool = False
    is_active: bool = True
    last_active: datetime = Field(default_factory=_now)


class Session(BaseModel):
    token_hash: str = Field(..., description="SHA256 of the bearer token")
    user_id: str
    expires_at: datetime


# Problems and collaboration

class Supporter(Embedded):
    user: str
    supported_at: datetime = Field(default_factory=_now)


class Solution(Embedded):
    author: str
    title: str
    description: str
    url: str = ""
    submitted_at: datetime = Field(default_factory=_now)
    votes: int = 0
    voters: List[str] = Field(default_factory=list)


class Collaborator(Embedded):
    user: str
    role: str = "Collaborator"
    joined_at: datetime = Field(default_factory=_now)
    is_acknowledged: bool = False


class Budget(BaseModel):
    amount: Optional[float] = None
    currency: str = "INR"
    type: BudgetType = "Volunteer"


class Problem(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=2000)
    category: ProblemCategory
    tags: List[str] = Field(default_factory=list)
    skills_needed: List[str] = Field(default_factory=list)
    difficulty: Difficulty = "Intermediate"
    estimated_time: ProblemEstimate = "1-3 days"
    author: str = Field(..., description="Id of the posting user")
    supporters: List[dict] = Field(default_factory=list)
    solutions: List[dict] = Field(default_factory=list)
    collaborators: List[dict] = Field(default_factory=list)
    status: ProblemStatus = "Open"
    completed_at: Optional[datetime] = None
    completion_notes: str = Field("", max_length=1000)
    priority: Priority = "Medium"
    budget: Budget = Field(default_factory=Budget)
    deadline: Optional[datetime] = None
    github_repo: Optional[str] = None
    project_links: List[str] = Field(default_factory=list)
    additional_resources: str = Field("", max_length=1000)
    project_type: ProjectType = "New Project"
    views: int = 0


class CollaborationRequest(BaseModel):
    problem: str
    requester: str
    problem_author: str
    message: str = Field("I would like to collaborate on this problem.", max_length=500)
    proposed_role: str = "Collaborator"
    status: RequestStatus = "pending"
    requested_at: datetime = Field(default_factory=_now)
    responded_at: Optional[datetime] = None
    response_message: str = Field("", max_length=500)


class CollaborationMessage(BaseModel):
    problem: str
    sender: str
    content: str = Field(..., min_length=1, max_length=1000)
    is_edited: bool = False
    edited_at: Optional[datetime] = None


# Projects

class Member(Embedded):
    user: str
    role: MemberRole = "Member"
    skills: List[str] = Field(default_factory=list)
    joined_at: datetime = Field(default_factory=_now)
    is_active: bool = True


class JoinRequest(Embedded):
    user: str
    message: str = ""
    skills: List[str] = Field(default_factory=list)
    requested_at: datetime = Field(default_factory=_now)
    status: JoinRequestStatus = "Pending"


class Task(Embedded):
    title: str
    description: str = ""
    assigned_to: Optional[str] = None
    status: TaskStatus = "Todo"
    priority: TaskPriority = "Medium"
    due_date: Optional[datetime] = None
    created_by: str
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class Milestone(Embedded):
    title: str
    description: str = ""
    due_date: Optional[datetime] = None
    status: MilestoneStatus = "Pending"
    completed_at: Optional[datetime] = None


class ProjectMessage(Embedded):
    author: str
    content: str
    type: MessageType = "text"
    attachments: List[dict] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)


class Project(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=2000)
    category: ProjectCategory
    tags: List[str] = Field(default_factory=list)
    skills_needed: List[str] = Field(default_factory=list)
    difficulty: Difficulty = "Intermediate"
    duration: ProjectDuration = "1-2 months"
    owner: str
    members: List[dict] = Field(default_factory=list)
    join_requests: List[dict] = Field(default_factory=list)
    tasks: List[dict] = Field(default_factory=list)
    milestones: List[dict] = Field(default_factory=list)
    status: ProjectStatus = "Planning"
    visibility: Visibility = "Public"
    max_members: int = Field(10, ge=1, le=50)
    repository: dict = Field(default_factory=dict, description="url and platform")
    demo_url: str = ""
    documentation: str = ""
    messages: List[dict] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)
    views: int = 0


# Challenges

class Submission(Embedded):
    participant: str
    submission_url: str = ""
    demo_url: str = ""
    description: str
    files: List[dict] = Field(default_factory=list)
    submitted_at: datetime = Field(default_factory=_now)
    score: Optional[float] = None
    feedback: str = ""
    is_winner: bool = False
    votes: int = 0
    voters: List[str] = Field(default_factory=list)


class Winner(BaseModel):
    participant: str
    rank: int = Field(..., ge=1)
    prize: str = ""
    announced_at: datetime = Field(default_factory=_now)


class Challenge(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=3000)
    instructions: str = Field(..., max_length=5000)
    category: ChallengeCategory
    difficulty: Difficulty = "Intermediate"
    skills_required: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    estimated_time: ChallengeEstimate = "3-5 hours"
    points: int = Field(100, ge=50, le=1000)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    submissions: List[dict] = Field(default_factory=list)
    participants: List[str] = Field(default_factory=list)
    winners: List[dict] = Field(default_factory=list)
    total_participants: int = 0
    total_submissions: int = 0
    created_by: str


# Reputation ledger

class ReputationEvent(BaseModel):
    user_id: str
    reason: str = Field(..., description="Ledger reason key, see reputation.AWARDS")
    points: int = Field(..., ge=0)
    project_contributions: int = Field(0, ge=0)
    completed_challenges: int = Field(0, ge=0)
    source: dict = Field(default_factory=dict, description="{kind, id} of the triggering document")
