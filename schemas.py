from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator, ConfigDict
from typing import Optional, List, Literal, Dict, Any, get_args
from datetime import datetime, timezone

from bson import ObjectId

from attachments import validate_attachment_url

# Each model corresponds to a MongoDB collection named by the lowercase class name
# Example: class User -> collection "user"

TaskStatus = Literal["pending", "in-progress", "completed"]
TaskCategory = Literal["general", "work", "personal", "education", "health"]
TaskPriority = Literal["low", "medium", "high", "asap"]
TopicSort = Literal["default", "completion-asc", "completion-desc"]

TASK_STATUSES = get_args(TaskStatus)
TASK_CATEGORIES = get_args(TaskCategory)
TASK_PRIORITIES = get_args(TaskPriority)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes (from clients or the store) are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(ObjectId())


class SubtopicNotFound(LookupError):
    pass


# Users

class User(BaseModel):
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password with salt")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


# Tasks

class TaskIn(BaseModel):
    """Fields a caller may set on a task (POST and PUT bodies)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: TaskStatus = "pending"
    category: TaskCategory = "general"
    priority: TaskPriority = "medium"
    due_date: Optional[datetime] = None
    reminder_date: Optional[datetime] = None

    @field_validator("due_date", "reminder_date")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class Task(TaskIn):
    """
    Tasks collection (collection name: task)
    """
    notified: bool = False
    owner: str = Field(..., description="Owning user id")


class TaskPatch(BaseModel):
    """Partial task update; only fields present in the body are applied."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[TaskStatus] = None
    category: Optional[TaskCategory] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    reminder_date: Optional[datetime] = None

    @field_validator("due_date", "reminder_date")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @model_validator(mode="after")
    def _no_null_required(self) -> "TaskPatch":
        for name in ("title", "status", "category", "priority"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# Topics

class Subtopic(BaseModel):
    """Embedded in Topic.subtopics; has no identity outside its topic."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=_new_id)
    title: str = Field(..., min_length=1, max_length=200)
    completed: bool = False
    attachment_url: Optional[str] = None

    @field_validator("attachment_url")
    @classmethod
    def _attachment(cls, v: Optional[str]) -> Optional[str]:
        return validate_attachment_url(v)


class SubtopicIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)


def _check_unique_ids(subtopics: List[Subtopic]) -> List[Subtopic]:
    seen = set()
    for s in subtopics:
        if s.id in seen:
            raise ValueError(f"duplicate subtopic id {s.id}")
        seen.add(s.id)
    return subtopics


class TopicIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    attachment_url: Optional[str] = None
    subtopics: List[Subtopic] = Field(default_factory=list)

    @field_validator("attachment_url")
    @classmethod
    def _attachment(cls, v: Optional[str]) -> Optional[str]:
        return validate_attachment_url(v)

    @field_validator("subtopics")
    @classmethod
    def _unique(cls, v: List[Subtopic]) -> List[Subtopic]:
        return _check_unique_ids(v)


class Topic(TopicIn):
    """
    Topics collection (collection name: topic)

    The topic is the aggregate root for its subtopics: every subtopic change
    goes through one of the commands below and is saved with the topic.
    """
    owner: str = Field(..., description="Owning user id")

    def find_subtopic(self, subtopic_id: str) -> Subtopic:
        for s in self.subtopics:
            if s.id == subtopic_id:
                return s
        raise SubtopicNotFound(subtopic_id)

    def add_subtopic(self, title: str) -> Subtopic:
        sub = Subtopic(title=title)
        self.subtopics.append(sub)
        return sub

    def toggle_subtopic(self, subtopic_id: str) -> Subtopic:
        sub = self.find_subtopic(subtopic_id)
        sub.completed = not sub.completed
        return sub

    def attach_to_subtopic(self, subtopic_id: str, attachment_url: str) -> Subtopic:
        sub = self.find_subtopic(subtopic_id)
        sub.attachment_url = validate_attachment_url(attachment_url)
        return sub

    def subtopics_document(self) -> List[Dict[str, Any]]:
        return [s.model_dump() for s in self.subtopics]


class TopicPatch(BaseModel):
    """Partial topic update; `subtopics`, when present, replaces the whole list."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    attachment_url: Optional[str] = None
    subtopics: Optional[List[Subtopic]] = None

    @field_validator("attachment_url")
    @classmethod
    def _attachment(cls, v: Optional[str]) -> Optional[str]:
        return validate_attachment_url(v)

    @field_validator("subtopics")
    @classmethod
    def _unique(cls, v: Optional[List[Subtopic]]) -> Optional[List[Subtopic]]:
        return None if v is None else _check_unique_ids(v)

    @model_validator(mode="after")
    def _no_null_required(self) -> "TopicPatch":
        for name in ("title", "subtopics"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)
