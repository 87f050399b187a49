"""
Database Schemas for the Semester Manager API

Each Pydantic model represents a collection in MongoDB. The collection name is the lowercase of the class name.
The models are checked right before a document is written, so the rules below hold for everything stored.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator, model_validator

from database import as_naive_utc, utcnow
from errors import ValidationFailure

TopicStatus = Literal["not-started", "learning", "needs-practice", "confident"]
ResourceType = Literal["PYQ", "Book", "Class Notes", "Personal Notes"]
AttendanceStatus = Literal["present", "absent", "late"]
DeadlineType = Literal["Assignment", "Quiz", "Midterm", "Endterm", "Project"]
Priority = Literal["overdue", "urgent", "soon", "later"]
FocusLevel = Literal["low", "medium", "high"]

# Allowed drift when checking that weightages add up to 100
WEIGHTAGE_TOLERANCE = 0.01


class Document(BaseModel):
    @field_validator("*")
    @classmethod
    def _store_naive_utc(cls, value):
        if isinstance(value, datetime):
            return as_naive_utc(value)
        return value


class User(Document):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str


class Subject(Document):
    user_id: str
    name: str = Field(..., min_length=1, description="Subject name")
    code: Optional[str] = Field(None, description="Course code, e.g. CS101")
    credits: Optional[float] = Field(None, ge=0)
    instructor: Optional[str] = None
    semester: Optional[str] = None
    color: str = Field("#3B82F6", description="Hex color used by the dashboard")


class Topic(Document):
    subject_id: str
    name: str = Field(..., min_length=1)
    unit: Optional[str] = Field(None, description="Unit/chapter label")
    status: TopicStatus = "not-started"
    notes: Optional[str] = None
    last_revised_at: Optional[datetime] = Field(None, description="Set when the topic becomes confident")


class Resource(Document):
    subject_id: str
    topic_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    type: ResourceType
    file_url: Optional[str] = None
    external_link: Optional[str] = None
    completed: bool = False
    has_personal_notes: bool = False
    personal_notes_id: Optional[str] = None
    upload_date: datetime = Field(default_factory=utcnow)
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _strip_tags(cls, tags: List[str]) -> List[str]:
        return [t.strip() for t in tags if t.strip()]


class GradingItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    weightage: float = Field(..., ge=0, le=100, description="Percent of the final grade")
    max_marks: Optional[float] = Field(None, ge=0)


class GradingComponent(Document):
    subject_id: str
    components: List[GradingItem]

    @model_validator(mode="after")
    def _weightages_total_100(self):
        total = sum(c.weightage for c in self.components)
        if abs(total - 100) > WEIGHTAGE_TOLERANCE:
            raise ValueError(f"Weightages must total 100%, got {total:g}%")
        return self


class Score(Document):
    subject_id: str
    component_name: str = Field(..., min_length=1)
    obtained: float = Field(..., ge=0)
    max: float = Field(..., ge=0)
    class_average: Optional[float] = Field(None, ge=0)
    class_max: Optional[float] = Field(None, ge=0)
    class_min: Optional[float] = Field(None, ge=0)
    date: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _obtained_within_max(self):
        if self.obtained > self.max:
            raise ValueError("Obtained score cannot exceed maximum score")
        return self


class Attendance(Document):
    subject_id: str
    date: datetime
    status: AttendanceStatus
    notes: Optional[str] = None


class Deadline(Document):
    subject_id: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: DeadlineType
    due_date: datetime
    due_time: Optional[str] = Field(None, description="Free-form time of day, e.g. 23:59")
    completed: bool = False
    completed_date: Optional[datetime] = None
    priority: Priority = "later"
    notification_sent: bool = False


class StudySession(Document):
    user_id: str
    subject_id: str
    topic_id: Optional[str] = None
    date: datetime = Field(default_factory=utcnow)
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: float = Field(0, ge=0, description="Minutes")
    notes: Optional[str] = None
    focus_level: Optional[FocusLevel] = None


def _error_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        msg = err["msg"]
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def validated(model: Type[Document], data: Dict[str, Any]) -> Dict[str, Any]:
    """Check data against a collection schema and return the document to store."""
    try:
        return model.model_validate(data).model_dump()
    except ValidationError as exc:
        raise ValidationFailure(_error_message(exc))
