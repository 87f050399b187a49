import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, EmailStr, Field

import calculations
from auth import create_access_token, decode_access_token, get_password_hash, verify_password
from config import Settings, configure_logging
from database import Store, as_naive_utc, connect, utcnow
from errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationFailure, register_error_handlers
from schemas import (
    Attendance,
    AttendanceStatus,
    Deadline,
    DeadlineType,
    FocusLevel,
    GradingComponent,
    GradingItem,
    Priority,
    Resource,
    ResourceType,
    Score,
    StudySession,
    Subject,
    Topic,
    TopicStatus,
    User,
    validated,
)
from storage import FileStorage

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

router = APIRouter(prefix="/api")
root = APIRouter()

# Collections that hang off a subject and go away with it
SUBJECT_CHILDREN = ["topic", "resource", "gradingcomponent", "score", "attendance", "deadline", "studysession"]


# -----------------------------
# Dependencies
# -----------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_storage(request: Request) -> FileStorage:
    return request.app.state.storage


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    if credentials is None:
        raise Unauthorized("Not authorized, no token")
    payload = decode_access_token(settings, credentials.credentials)
    user = store.get_document_by_id("user", payload["sub"])
    if not user:
        raise Unauthorized("User not found")
    return user


def _check_owner(subject: Optional[Dict[str, Any]], user: Dict[str, Any], what: str) -> None:
    if not subject or subject.get("user_id") != user["id"]:
        logger.warning("User %s denied access to %s", user["id"], what)
        raise Forbidden(f"Not authorized to access this {what}")


def user_subject(
    subject_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    subject = store.get_document_by_id("subject", subject_id)
    if not subject:
        raise NotFound("Subject not found")
    _check_owner(subject, user, "subject")
    return subject


def owned_subject_or_404(store: Store, subject_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    subject = store.get_document_by_id("subject", subject_id)
    if not subject or subject["user_id"] != user["id"]:
        raise NotFound("Subject not found")
    return subject


def owned_child(store: Store, collection: str, doc_id: str, user: Dict[str, Any], label: str) -> Dict[str, Any]:
    """Load a subject-scoped document the caller may touch."""
    doc = store.get_document_by_id(collection, doc_id)
    if not doc:
        raise NotFound(f"{label} not found")
    _check_owner(store.get_document_by_id("subject", doc["subject_id"]), user, label.lower())
    return doc


def _insert(store: Store, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc_id = store.create_document(collection, data)
    logger.info("Created %s %s", collection, doc_id)
    return store.get_document_by_id(collection, doc_id)


def _merged(model, existing: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    return validated(model, {**existing, **updates})


# -----------------------------
# Request bodies
# -----------------------------
class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RegisterRequest(StrictModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(StrictModel):
    email: EmailStr
    password: str


class SubjectIn(StrictModel):
    name: str
    code: Optional[str] = None
    credits: Optional[float] = None
    instructor: Optional[str] = None
    semester: Optional[str] = None
    color: Optional[str] = None


class SubjectUpdate(StrictModel):
    name: Optional[str] = None
    code: Optional[str] = None
    credits: Optional[float] = None
    instructor: Optional[str] = None
    semester: Optional[str] = None
    color: Optional[str] = None


class TopicIn(StrictModel):
    name: str
    unit: Optional[str] = None
    status: TopicStatus = "not-started"
    notes: Optional[str] = None


class TopicUpdate(StrictModel):
    name: Optional[str] = None
    unit: Optional[str] = None
    status: Optional[TopicStatus] = None
    notes: Optional[str] = None


class TopicStatusIn(StrictModel):
    status: TopicStatus


class ResourceIn(StrictModel):
    title: str
    type: ResourceType
    topic_id: Optional[str] = None
    file_url: Optional[str] = None
    external_link: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class ResourceUpdate(StrictModel):
    title: Optional[str] = None
    type: Optional[ResourceType] = None
    topic_id: Optional[str] = None
    file_url: Optional[str] = None
    external_link: Optional[str] = None
    tags: Optional[List[str]] = None
    completed: Optional[bool] = None


class LinkNotesIn(StrictModel):
    personal_notes_id: str


class GradingSchemeIn(StrictModel):
    components: List[GradingItem]


class ScoreIn(StrictModel):
    component_name: str
    obtained: float
    max: float
    class_average: Optional[float] = None
    class_max: Optional[float] = None
    class_min: Optional[float] = None
    date: Optional[datetime] = None


class ScoreUpdate(StrictModel):
    component_name: Optional[str] = None
    obtained: Optional[float] = None
    max: Optional[float] = None
    class_average: Optional[float] = None
    class_max: Optional[float] = None
    class_min: Optional[float] = None
    date: Optional[datetime] = None


class AttendanceIn(StrictModel):
    date: datetime
    status: AttendanceStatus
    notes: Optional[str] = None


class AttendanceUpdate(StrictModel):
    date: Optional[datetime] = None
    status: Optional[AttendanceStatus] = None
    notes: Optional[str] = None


class DeadlineIn(StrictModel):
    subject_id: str
    title: str
    type: DeadlineType
    due_date: datetime
    due_time: Optional[str] = None
    description: Optional[str] = None


class DeadlineUpdate(StrictModel):
    subject_id: Optional[str] = None
    title: Optional[str] = None
    type: Optional[DeadlineType] = None
    due_date: Optional[datetime] = None
    due_time: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None
    notification_sent: Optional[bool] = None


class StudySessionIn(StrictModel):
    subject_id: str
    topic_id: Optional[str] = None
    date: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None
    notes: Optional[str] = None
    focus_level: Optional[FocusLevel] = None


class StudySessionUpdate(StrictModel):
    subject_id: Optional[str] = None
    topic_id: Optional[str] = None
    date: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None
    notes: Optional[str] = None
    focus_level: Optional[FocusLevel] = None


# -----------------------------
# Health / Root
# -----------------------------
@root.get("/")
def read_root():
    return {"message": "Semester Manager API running"}


@root.get("/health")
def health():
    return {"status": "OK", "message": "Semester Manager API is running"}


@root.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Connected",
        "database_name": store.name,
        "collections": [],
    }
    try:
        response["collections"] = store.collection_names()
        response["database"] = "✅ Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["error"] = str(e)[:80]
    return response


# -----------------------------
# Auth
# -----------------------------
def _auth_response(settings: Settings, user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "access_token": create_access_token(settings, {"sub": user["id"]}),
        "token_type": "bearer",
    }


@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, settings: Settings = Depends(get_settings), store: Store = Depends(get_store)):
    email = payload.email.lower()
    if store.find_document("user", {"email": email}):
        raise Conflict("User already exists")
    user = _insert(store, "user", validated(User, {
        "name": payload.name,
        "email": email,
        "password_hash": get_password_hash(payload.password),
    }))
    return _auth_response(settings, user)


@router.post("/auth/login")
def login(payload: LoginRequest, settings: Settings = Depends(get_settings), store: Store = Depends(get_store)):
    user = store.find_document("user", {"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise Unauthorized("Invalid email or password")
    return _auth_response(settings, user)


@router.get("/auth/me")
def me(user=Depends(get_current_user)):
    return {"id": user["id"], "name": user["name"], "email": user["email"]}


# -----------------------------
# Subjects
# -----------------------------
@router.post("/subjects", status_code=201)
def create_subject(payload: SubjectIn, user=Depends(get_current_user), store: Store = Depends(get_store)):
    data = payload.model_dump(exclude_none=True)
    return _insert(store, "subject", validated(Subject, {"user_id": user["id"], **data}))


@router.get("/subjects")
def list_subjects(user=Depends(get_current_user), store: Store = Depends(get_store)):
    return store.get_documents("subject", {"user_id": user["id"]}, sort=[("created_at", -1)])


@router.get("/subjects/{subject_id}")
def get_subject(subject=Depends(user_subject)):
    return subject


@router.put("/subjects/{subject_id}")
def update_subject(payload: SubjectUpdate, subject=Depends(user_subject), store: Store = Depends(get_store)):
    data = _merged(Subject, subject, payload.model_dump(exclude_unset=True))
    return store.update_document("subject", subject["id"], data)


@router.delete("/subjects/{subject_id}")
def delete_subject(
    subject=Depends(user_subject),
    store: Store = Depends(get_store),
    storage: FileStorage = Depends(get_storage),
):
    for resource in store.get_documents("resource", {"subject_id": subject["id"]}):
        storage.delete(resource.get("file_url"))
    removed = {name: store.delete_documents(name, {"subject_id": subject["id"]}) for name in SUBJECT_CHILDREN}
    store.delete_document("subject", subject["id"])
    logger.info("Deleted subject %s with %s", subject["id"], removed)
    return {"message": "Subject deleted successfully", "removed": removed}


# -----------------------------
# Topics
# -----------------------------
def _topic_with_stats(store: Store, topic: Dict[str, Any]) -> Dict[str, Any]:
    total = store.count_documents("resource", {"topic_id": topic["id"]})
    completed = store.count_documents("resource", {"topic_id": topic["id"], "completed": True})
    return {
        **topic,
        "total_resources": total,
        "completed_resources": completed,
        "completion_rate": round(calculations.completion_rate(completed, total), 2),
    }


def _revision_stamp(updates: Dict[str, Any]) -> Dict[str, Any]:
    if updates.get("status") == "confident":
        updates["last_revised_at"] = utcnow()
    return updates


@router.post("/subjects/{subject_id}/topics", status_code=201)
def create_topic(payload: TopicIn, subject=Depends(user_subject), store: Store = Depends(get_store)):
    data = _revision_stamp({"subject_id": subject["id"], **payload.model_dump()})
    return _insert(store, "topic", validated(Topic, data))


@router.get("/subjects/{subject_id}/topics")
def list_topics(subject=Depends(user_subject), store: Store = Depends(get_store)):
    topics = store.get_documents("topic", {"subject_id": subject["id"]}, sort=[("created_at", -1)])
    return [_topic_with_stats(store, t) for t in topics]


@router.get("/subjects/{subject_id}/weak-topics")
def list_weak_topics(subject=Depends(user_subject), store: Store = Depends(get_store)):
    weak = []
    for topic in store.get_documents("topic", {"subject_id": subject["id"]}):
        topic = _topic_with_stats(store, topic)
        reason = calculations.weakness_reason(topic["status"], topic["total_resources"], topic["completed_resources"])
        if reason:
            weak.append({**topic, "reason": reason})
    return weak


@router.get("/topics/{topic_id}")
def get_topic(topic_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return owned_child(store, "topic", topic_id, user, "Topic")


@router.put("/topics/{topic_id}")
def update_topic(topic_id: str, payload: TopicUpdate, user=Depends(get_current_user), store: Store = Depends(get_store)):
    topic = owned_child(store, "topic", topic_id, user, "Topic")
    data = _merged(Topic, topic, _revision_stamp(payload.model_dump(exclude_unset=True)))
    return store.update_document("topic", topic_id, data)


@router.patch("/topics/{topic_id}/status")
def update_topic_status(
    topic_id: str, payload: TopicStatusIn, user=Depends(get_current_user), store: Store = Depends(get_store)
):
    owned_child(store, "topic", topic_id, user, "Topic")
    return store.update_document("topic", topic_id, _revision_stamp({"status": payload.status}))


@router.delete("/topics/{topic_id}")
def delete_topic(topic_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    owned_child(store, "topic", topic_id, user, "Topic")
    store.delete_document("topic", topic_id)
    logger.info("Deleted topic %s", topic_id)
    return {"message": "Topic deleted successfully"}


# -----------------------------
# Resources
# -----------------------------
def _check_topic(store: Store, topic_id: Optional[str], subject_id: str) -> None:
    if topic_id is None:
        return
    topic = store.get_document_by_id("topic", topic_id)
    if not topic or topic["subject_id"] != subject_id:
        raise NotFound("Topic not found")


def _named(store: Store, collection: str, doc_id: Optional[str], *fields: str) -> Optional[Dict[str, Any]]:
    if not doc_id:
        return None
    doc = store.get_document_by_id(collection, doc_id)
    if not doc:
        return None
    return {"id": doc["id"], **{f: doc.get(f) for f in fields}}


@router.post("/subjects/{subject_id}/resources", status_code=201)
def create_resource(payload: ResourceIn, subject=Depends(user_subject), store: Store = Depends(get_store)):
    _check_topic(store, payload.topic_id, subject["id"])
    return _insert(store, "resource", validated(Resource, {"subject_id": subject["id"], **payload.model_dump()}))


@router.get("/subjects/{subject_id}/resources")
def list_resources(
    type: Optional[ResourceType] = None,
    completed: Optional[bool] = None,
    topic_id: Optional[str] = None,
    subject=Depends(user_subject),
    store: Store = Depends(get_store),
):
    flt: Dict[str, Any] = {"subject_id": subject["id"]}
    if type:
        flt["type"] = type
    if completed is not None:
        flt["completed"] = completed
    if topic_id:
        flt["topic_id"] = topic_id
    resources = store.get_documents("resource", flt, sort=[("upload_date", -1)])
    for r in resources:
        r["topic"] = _named(store, "topic", r.get("topic_id"), "name")
    return resources


@router.get("/resources/{resource_id}")
def get_resource(resource_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    resource = owned_child(store, "resource", resource_id, user, "Resource")
    resource["subject"] = _named(store, "subject", resource["subject_id"], "name")
    resource["topic"] = _named(store, "topic", resource.get("topic_id"), "name")
    return resource


@router.put("/resources/{resource_id}")
def update_resource(
    resource_id: str, payload: ResourceUpdate, user=Depends(get_current_user), store: Store = Depends(get_store)
):
    resource = owned_child(store, "resource", resource_id, user, "Resource")
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("topic_id") and updates["topic_id"] != resource.get("topic_id"):
        _check_topic(store, updates["topic_id"], resource["subject_id"])
    return store.update_document("resource", resource_id, _merged(Resource, resource, updates))


@router.delete("/resources/{resource_id}")
def delete_resource(
    resource_id: str,
    user=Depends(get_current_user),
    store: Store = Depends(get_store),
    storage: FileStorage = Depends(get_storage),
):
    resource = owned_child(store, "resource", resource_id, user, "Resource")
    storage.delete(resource.get("file_url"))
    store.delete_document("resource", resource_id)
    logger.info("Deleted resource %s", resource_id)
    return {"message": "Resource deleted successfully"}


@router.patch("/resources/{resource_id}/complete")
def toggle_resource_completion(resource_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    resource = owned_child(store, "resource", resource_id, user, "Resource")
    return store.update_document("resource", resource_id, {"completed": not resource.get("completed", False)})


@router.post("/resources/{resource_id}/link-notes")
def link_personal_notes(
    resource_id: str, payload: LinkNotesIn, user=Depends(get_current_user), store: Store = Depends(get_store)
):
    owned_child(store, "resource", resource_id, user, "Resource")
    owned_child(store, "resource", payload.personal_notes_id, user, "Resource")
    return store.update_document("resource", resource_id, {
        "has_personal_notes": True,
        "personal_notes_id": payload.personal_notes_id,
    })


@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    user=Depends(get_current_user),
    storage: FileStorage = Depends(get_storage),
):
    content = await file.read()
    if not content:
        raise ValidationFailure("No file uploaded")
    return storage.save(file.filename, content)


# -----------------------------
# Grading
# -----------------------------
@router.post("/subjects/{subject_id}/grading")
@router.put("/subjects/{subject_id}/grading")
def set_grading_scheme(payload: GradingSchemeIn, subject=Depends(user_subject), store: Store = Depends(get_store)):
    data = validated(GradingComponent, {
        "subject_id": subject["id"],
        "components": [c.model_dump() for c in payload.components],
    })
    return store.upsert_document("gradingcomponent", {"subject_id": subject["id"]}, data)


@router.get("/subjects/{subject_id}/grading")
def get_grading_scheme(subject=Depends(user_subject), store: Store = Depends(get_store)):
    scheme = store.find_document("gradingcomponent", {"subject_id": subject["id"]})
    if not scheme:
        raise NotFound("Grading scheme not found")
    return scheme


@router.post("/subjects/{subject_id}/scores", status_code=201)
def add_score(payload: ScoreIn, subject=Depends(user_subject), store: Store = Depends(get_store)):
    data = {"subject_id": subject["id"], **payload.model_dump(exclude_none=True)}
    return _insert(store, "score", validated(Score, data))


@router.get("/subjects/{subject_id}/scores")
def list_scores(subject=Depends(user_subject), store: Store = Depends(get_store)):
    return store.get_documents("score", {"subject_id": subject["id"]}, sort=[("date", -1)])


@router.get("/subjects/{subject_id}/calculate")
def calculate_score(subject=Depends(user_subject), store: Store = Depends(get_store)):
    scheme = store.find_document("gradingcomponent", {"subject_id": subject["id"]})
    if not scheme:
        raise NotFound("Grading scheme not set")
    scores = store.get_documents("score", {"subject_id": subject["id"]}, sort=[("_id", 1)])
    return calculations.grade_breakdown(scheme["components"], scores)


@router.put("/scores/{score_id}")
def update_score(score_id: str, payload: ScoreUpdate, user=Depends(get_current_user), store: Store = Depends(get_store)):
    score = owned_child(store, "score", score_id, user, "Score")
    updates = {**payload.model_dump(exclude_unset=True), "last_updated": utcnow()}
    return store.update_document("score", score_id, _merged(Score, score, updates))


@router.delete("/scores/{score_id}")
def delete_score(score_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    owned_child(store, "score", score_id, user, "Score")
    store.delete_document("score", score_id)
    return {"message": "Score deleted successfully"}


# -----------------------------
# Attendance
# -----------------------------
@router.post("/subjects/{subject_id}/attendance", status_code=201)
def mark_attendance(payload: AttendanceIn, subject=Depends(user_subject), store: Store = Depends(get_store)):
    return _insert(store, "attendance", validated(Attendance, {"subject_id": subject["id"], **payload.model_dump()}))


@router.get("/subjects/{subject_id}/attendance")
def list_attendance(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    subject=Depends(user_subject),
    store: Store = Depends(get_store),
):
    flt: Dict[str, Any] = {"subject_id": subject["id"]}
    if start_date and end_date:
        flt["date"] = {"$gte": as_naive_utc(start_date), "$lte": as_naive_utc(end_date)}
    return store.get_documents("attendance", flt, sort=[("date", -1)])


@router.get("/subjects/{subject_id}/attendance/stats")
def attendance_stats(
    subject=Depends(user_subject),
    settings: Settings = Depends(get_settings),
    store: Store = Depends(get_store),
):
    entries = store.get_documents("attendance", {"subject_id": subject["id"]})
    return calculations.attendance_summary(entries, settings.attendance_target)


@router.put("/attendance/{attendance_id}")
def update_attendance(
    attendance_id: str, payload: AttendanceUpdate, user=Depends(get_current_user), store: Store = Depends(get_store)
):
    entry = owned_child(store, "attendance", attendance_id, user, "Attendance record")
    data = _merged(Attendance, entry, payload.model_dump(exclude_unset=True))
    return store.update_document("attendance", attendance_id, data)


@router.delete("/attendance/{attendance_id}")
def delete_attendance(attendance_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    owned_child(store, "attendance", attendance_id, user, "Attendance record")
    store.delete_document("attendance", attendance_id)
    return {"message": "Attendance deleted successfully"}


# -----------------------------
# Deadlines
# -----------------------------
def _prioritized(deadline: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    # Completed deadlines keep the priority they were completed with
    if not deadline["completed"]:
        deadline["priority"] = calculations.derive_priority(deadline["due_date"], now)
    return deadline


def _with_subject(store: Store, deadlines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    for d in deadlines:
        d["subject"] = _named(store, "subject", d["subject_id"], "name", "color")
    return deadlines


def _user_subject_ids(store: Store, user: Dict[str, Any]) -> List[str]:
    return [s["id"] for s in store.get_documents("subject", {"user_id": user["id"]})]


@router.post("/deadlines", status_code=201)
def create_deadline(payload: DeadlineIn, user=Depends(get_current_user), store: Store = Depends(get_store)):
    owned_subject_or_404(store, payload.subject_id, user)
    data = validated(Deadline, payload.model_dump())
    return _insert(store, "deadline", _prioritized(data, utcnow()))


@router.get("/deadlines")
def list_deadlines(
    subject_id: Optional[str] = None,
    completed: Optional[bool] = None,
    priority: Optional[Priority] = None,
    user=Depends(get_current_user),
    store: Store = Depends(get_store),
):
    subject_ids = _user_subject_ids(store, user)
    if subject_id and subject_id not in subject_ids:
        raise Forbidden("Subject not found or access denied")

    flt: Dict[str, Any] = {"subject_id": subject_id if subject_id else {"$in": subject_ids}}
    if completed is not None:
        flt["completed"] = completed
    if priority:
        flt["priority"] = priority
    return _with_subject(store, store.get_documents("deadline", flt, sort=[("due_date", 1)]))


@router.get("/deadlines/urgent")
def list_urgent_deadlines(user=Depends(get_current_user), store: Store = Depends(get_store)):
    flt = {
        "subject_id": {"$in": _user_subject_ids(store, user)},
        "completed": False,
        "priority": {"$in": ["urgent", "overdue"]},
    }
    return _with_subject(store, store.get_documents("deadline", flt, sort=[("due_date", 1)]))


@router.put("/deadlines/{deadline_id}")
def update_deadline(
    deadline_id: str, payload: DeadlineUpdate, user=Depends(get_current_user), store: Store = Depends(get_store)
):
    deadline = owned_child(store, "deadline", deadline_id, user, "Deadline")
    updates = payload.model_dump(exclude_unset=True)

    if updates.get("subject_id") and updates["subject_id"] != deadline["subject_id"]:
        owned_subject_or_404(store, updates["subject_id"], user)
    if "completed" in updates and updates["completed"] != deadline["completed"]:
        updates["completed_date"] = utcnow() if updates["completed"] else None

    data = _prioritized(_merged(Deadline, deadline, updates), utcnow())
    return store.update_document("deadline", deadline_id, data)


@router.patch("/deadlines/{deadline_id}/complete")
def toggle_deadline_completion(deadline_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    deadline = owned_child(store, "deadline", deadline_id, user, "Deadline")
    completed = not deadline["completed"]
    updates = {"completed": completed, "completed_date": utcnow() if completed else None}
    data = _prioritized(_merged(Deadline, deadline, updates), utcnow())
    return store.update_document("deadline", deadline_id, data)


@router.delete("/deadlines/{deadline_id}")
def delete_deadline(deadline_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    owned_child(store, "deadline", deadline_id, user, "Deadline")
    store.delete_document("deadline", deadline_id)
    logger.info("Deleted deadline %s", deadline_id)
    return {"message": "Deadline deleted successfully"}


# -----------------------------
# Study sessions
# -----------------------------
def _owned_session(store: Store, session_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    session = store.get_document_by_id("studysession", session_id)
    if not session or session["user_id"] != user["id"]:
        raise NotFound("Session not found")
    return session


def _fill_duration(data: Dict[str, Any], explicit: bool) -> Dict[str, Any]:
    if not explicit and data.get("end_time") and data.get("start_time"):
        data["duration"] = calculations.session_minutes(data["start_time"], data["end_time"])
    return data


@router.post("/study-sessions", status_code=201)
def create_study_session(payload: StudySessionIn, user=Depends(get_current_user), store: Store = Depends(get_store)):
    subject = owned_subject_or_404(store, payload.subject_id, user)
    _check_topic(store, payload.topic_id, subject["id"])

    data = payload.model_dump(exclude_none=True)
    data.setdefault("start_time", utcnow())
    data.setdefault("date", data["start_time"])
    data = _fill_duration(data, explicit=payload.duration is not None)
    return _insert(store, "studysession", validated(StudySession, {"user_id": user["id"], **data}))


@router.get("/study-sessions")
def list_study_sessions(
    subject_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user=Depends(get_current_user),
    store: Store = Depends(get_store),
):
    flt: Dict[str, Any] = {"user_id": user["id"]}
    if subject_id:
        flt["subject_id"] = subject_id
    if start_date and end_date:
        flt["date"] = {"$gte": as_naive_utc(start_date), "$lte": as_naive_utc(end_date)}
    sessions = store.get_documents("studysession", flt, sort=[("date", -1)])
    for s in sessions:
        s["subject"] = _named(store, "subject", s["subject_id"], "name", "color")
        s["topic"] = _named(store, "topic", s.get("topic_id"), "name")
    return sessions


@router.get("/study-sessions/stats")
def study_session_stats(period: str = "week", user=Depends(get_current_user), store: Store = Depends(get_store)):
    if period not in ("day", "week", "month"):
        period = "week"
    now = utcnow()
    sessions = store.get_documents("studysession", {
        "user_id": user["id"],
        "date": {"$gte": now - timedelta(days=calculations.HEATMAP_DAYS), "$lte": now},
    })
    subjects = {s["id"]: s for s in store.get_documents("subject", {"user_id": user["id"]})}
    return calculations.study_stats(sessions, subjects, period, now)


@router.put("/study-sessions/{session_id}")
def update_study_session(
    session_id: str, payload: StudySessionUpdate, user=Depends(get_current_user), store: Store = Depends(get_store)
):
    session = _owned_session(store, session_id, user)
    updates = payload.model_dump(exclude_unset=True)
    subject_id = updates.get("subject_id") or session["subject_id"]
    if subject_id != session["subject_id"]:
        owned_subject_or_404(store, subject_id, user)
    if updates.get("topic_id"):
        _check_topic(store, updates["topic_id"], subject_id)

    timing_changed = "start_time" in updates or "end_time" in updates
    data = _fill_duration({**session, **updates}, explicit="duration" in updates or not timing_changed)
    return store.update_document("studysession", session_id, validated(StudySession, data))


@router.delete("/study-sessions/{session_id}")
def delete_study_session(session_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    _owned_session(store, session_id, user)
    store.delete_document("studysession", session_id)
    return {"message": "Session deleted successfully"}


# -----------------------------
# Application
# -----------------------------
def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    storage: Optional[FileStorage] = None,
) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store.ensure_indexes()
        logger.info("Semester Manager API started on database %s", app.state.store.name)
        yield

    app = FastAPI(title="Semester Manager API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store or connect(settings)
    app.state.storage = storage or FileStorage(settings.upload_dir)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(root)
    app.include_router(router)

    # Static files for uploads (serve if running via uvicorn directly)
    app.mount("/uploads", StaticFiles(directory=app.state.storage.directory), name="uploads")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    configure_logging(settings.log_level)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
