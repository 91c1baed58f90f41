import logging
import os
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from attachments import AttachmentError, encode_pdf_upload
from auth import Session, create_token, get_session, hash_password, verify_password
from config import Settings, get_settings
from database import create_document, db as default_db, ensure_indexes, get_db, get_document, get_documents, to_object_id
from logging_setup import setup_logging
from notifications import Window, bucket_tasks, candidate_filter
from progress import category_summary, sort_topics, task_summary, topic_percentage
from schemas import (
    LoginRequest,
    RegisterRequest,
    SubtopicIn,
    SubtopicNotFound,
    Task,
    TaskIn,
    TaskPatch,
    Topic,
    TopicIn,
    TopicPatch,
    TopicSort,
    User,
    TASK_CATEGORIES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    as_utc,
)

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(level=settings.log_level, log_dir=settings.log_dir or None)
    if settings.uses_default_secret:
        logger.warning("TASKIFY_JWT_SECRET is not set; tokens are signed with the development secret")
    if settings.zone.key != settings.timezone:
        logger.warning("TASKIFY_TIMEZONE=%r is not a known zone; using %s", settings.timezone, settings.zone.key)
    try:
        ensure_indexes(default_db)
    except PyMongoError as e:
        logger.warning("Could not ensure indexes: %s", e)
    yield


app = FastAPI(title="Taskify API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Utilities

def get_now() -> datetime:
    """Clock dependency; one value per request."""
    return datetime.now(timezone.utc)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = as_utc(v).isoformat()
    return doc


def serialize_topic(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize_doc(doc)
    out["subtopics"] = [dict(s) for s in doc.get("subtopics", [])]
    out["progress"] = topic_percentage(out["subtopics"])
    return out


def _owned(db: Database, collection: str, record_id: str, session: Session, label: str) -> Dict[str, Any]:
    """Owner guard: 404 when the record does not exist, 401 when it belongs to someone else."""
    doc = get_document(db, collection, record_id)
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    if not session.owns(doc):
        logger.info("User %s denied access to %s %s", session.user_id, collection, record_id)
        raise HTTPException(status_code=401, detail="User not authorized")
    return doc


def _enum_filter(value: Optional[str], allowed: Sequence[str], name: str) -> Optional[str]:
    if value is None or value == "all":
        return None
    if value not in allowed:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")
    return value


def _read_upload(file: Optional[UploadFile], cfg: Settings) -> str:
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    try:
        # One byte past the limit is enough to reject; never buffer the rest.
        content = file.file.read(cfg.max_attachment_bytes + 1)
        return encode_pdf_upload(
            content,
            filename=file.filename,
            content_type=file.content_type,
            max_bytes=cfg.max_attachment_bytes,
        )
    except AttachmentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        file.file.close()


# Error handlers

@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        errors.append({"loc": loc, "msg": err.get("msg", "")})
    detail = "; ".join(f"{'.'.join(e['loc'])}: {e['msg']}" if e["loc"] else e["msg"] for e in errors)
    return JSONResponse(status_code=400, content={"detail": detail or "Invalid request", "errors": errors})


@app.exception_handler(PyMongoError)
async def store_error(request: Request, exc: PyMongoError):
    logger.exception("Store error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.get("/")
def read_root():
    return {"message": "Taskify API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("TASKIFY_DATABASE_URL") or os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": getattr(db, "name", None) or "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# Users

def _auth_response(user: Dict[str, Any], cfg: Settings) -> Dict[str, Any]:
    user_id = str(user["_id"])
    return {"id": user_id, "email": user["email"], "token": create_token(user_id, cfg)}


@app.post("/users", status_code=201)
def register(req: RegisterRequest, db: Database = Depends(get_db), cfg: Settings = Depends(get_settings)):
    users = db["user"]
    if users.find_one({"email": req.email}):
        raise HTTPException(status_code=400, detail="User already exists")
    try:
        user_id = create_document(db, "user", User(email=req.email, password_hash=hash_password(req.password)))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    logger.info("Registered user %s", user_id)
    return _auth_response(users.find_one({"_id": to_object_id(user_id)}), cfg)


@app.post("/users/login")
def login(req: LoginRequest, db: Database = Depends(get_db), cfg: Settings = Depends(get_settings)):
    user = db["user"].find_one({"email": req.email})
    if not user or not verify_password(req.password, user.get("password_hash", "")):
        logger.info("Failed login for %s", req.email)
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return _auth_response(user, cfg)


@app.get("/users/me")
def me(session: Session = Depends(get_session), db: Database = Depends(get_db)):
    user = db["user"].find_one({"_id": to_object_id(session.user_id)})
    out = serialize_doc(user)
    out.pop("password_hash", None)
    return out


# Tasks

@app.get("/tasks")
def list_tasks(
    search: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[str] = None,
    session: Session = Depends(get_session),
    db: Database = Depends(get_db),
):
    filter_q: Dict[str, Any] = {"owner": session.user_id}
    for field, value, allowed in (
        ("status", status, TASK_STATUSES),
        ("category", category, TASK_CATEGORIES),
        ("priority", priority, TASK_PRIORITIES),
    ):
        chosen = _enum_filter(value, allowed, field)
        if chosen:
            filter_q[field] = chosen
    if search and search.strip():
        pattern = re.escape(search.strip())
        filter_q["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    return [serialize_doc(d) for d in get_documents(db, "task", filter_q)]


@app.post("/tasks", status_code=201)
def create_task(body: TaskIn, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    task = Task(**body.model_dump(), owner=session.user_id)
    task_id = create_document(db, "task", task)
    logger.debug("Task %s created for %s", task_id, session.user_id)
    return serialize_doc(get_document(db, "task", task_id))


@app.get("/tasks/{task_id}")
def get_task(task_id: str, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    return serialize_doc(_owned(db, "task", task_id, session, "Task"))


def _update_task(db: Database, doc: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    if not changes:
        return serialize_doc(doc)
    changes["updated_at"] = datetime.now(timezone.utc)
    updated = db["task"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return serialize_doc(updated)


@app.put("/tasks/{task_id}")
def replace_task(task_id: str, body: TaskIn, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    doc = _owned(db, "task", task_id, session, "Task")
    return _update_task(db, doc, body.model_dump())


@app.patch("/tasks/{task_id}")
def patch_task(task_id: str, body: TaskPatch, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    doc = _owned(db, "task", task_id, session, "Task")
    return _update_task(db, doc, body.changes())


@app.delete("/tasks/{task_id}")
def delete_task(task_id: str, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    doc = _owned(db, "task", task_id, session, "Task")
    db["task"].delete_one({"_id": doc["_id"]})
    return {"id": task_id}


# Notifications

@app.get("/notifications")
def get_notifications(
    session: Session = Depends(get_session),
    db: Database = Depends(get_db),
    cfg: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    window = Window.at(now, cfg.zone)
    buckets = bucket_tasks(get_documents(db, "task", candidate_filter(session.user_id)), window)

    matched = buckets.matched()
    if matched:
        db["task"].update_many(
            {"_id": {"$in": [t["_id"] for t in matched]}},
            {"$set": {"notified": True}},
        )
    logger.debug(
        "Notifications for %s: reminders=%d due_today=%d overdue=%d",
        session.user_id, len(buckets.reminders), len(buckets.due_today), len(buckets.overdue),
    )
    return {
        "reminders": [serialize_doc(t) for t in buckets.reminders],
        "dueToday": [serialize_doc(t) for t in buckets.due_today],
        "overdue": [serialize_doc(t) for t in buckets.overdue],
    }


@app.put("/notifications/mark-read")
def mark_notifications_read(session: Session = Depends(get_session), db: Database = Depends(get_db)):
    res = db["task"].update_many(
        {"owner": session.user_id, "notified": True},
        {"$set": {"notified": False}},
    )
    return {"success": True, "updated": res.modified_count}


# Progress

@app.get("/progress")
def get_progress(session: Session = Depends(get_session), db: Database = Depends(get_db)):
    return task_summary(get_documents(db, "task", {"owner": session.user_id}))


@app.get("/progress/categories")
def get_category_progress(session: Session = Depends(get_session), db: Database = Depends(get_db)):
    return category_summary(get_documents(db, "task", {"owner": session.user_id}))


# Topics

def _load_topic(db: Database, topic_id: str, session: Session) -> Tuple[Dict[str, Any], Topic]:
    doc = _owned(db, "topic", topic_id, session, "Topic")
    return doc, Topic.model_validate(doc)


def _save_subtopics(db: Database, doc: Dict[str, Any], topic: Topic) -> Dict[str, Any]:
    """Write the topic's subtopic list back in one update; concurrent writers are last-write-wins."""
    updated = db["topic"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": {"subtopics": topic.subtopics_document(), "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Topic not found")
    return serialize_topic(updated)


def _update_topic(db: Database, doc: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    if not changes:
        return serialize_topic(doc)
    changes["updated_at"] = datetime.now(timezone.utc)
    updated = db["topic"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Topic not found")
    return serialize_topic(updated)


@app.get("/topics")
def list_topics(
    sort: TopicSort = "default",
    session: Session = Depends(get_session),
    db: Database = Depends(get_db),
) -> List[Dict[str, Any]]:
    topics = [serialize_topic(d) for d in get_documents(db, "topic", {"owner": session.user_id})]
    return sort_topics(topics, sort)


@app.post("/topics", status_code=201)
def create_topic(body: TopicIn, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    topic = Topic(**body.model_dump(), owner=session.user_id)
    topic_id = create_document(db, "topic", topic)
    logger.debug("Topic %s created for %s", topic_id, session.user_id)
    return serialize_topic(get_document(db, "topic", topic_id))


@app.get("/topics/{topic_id}")
def get_topic(topic_id: str, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    return serialize_topic(_owned(db, "topic", topic_id, session, "Topic"))


@app.put("/topics/{topic_id}")
def replace_topic(topic_id: str, body: TopicIn, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    doc = _owned(db, "topic", topic_id, session, "Topic")
    return _update_topic(db, doc, body.model_dump())


@app.patch("/topics/{topic_id}")
def patch_topic(topic_id: str, body: TopicPatch, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    doc = _owned(db, "topic", topic_id, session, "Topic")
    return _update_topic(db, doc, body.changes())


@app.delete("/topics/{topic_id}")
def delete_topic(topic_id: str, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    doc = _owned(db, "topic", topic_id, session, "Topic")
    db["topic"].delete_one({"_id": doc["_id"]})
    return {"id": topic_id}


@app.post("/topics/{topic_id}/attachment")
def upload_topic_attachment(
    topic_id: str,
    file: Optional[UploadFile] = File(None),
    session: Session = Depends(get_session),
    db: Database = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    doc = _owned(db, "topic", topic_id, session, "Topic")
    return _update_topic(db, doc, {"attachment_url": _read_upload(file, cfg)})


@app.post("/topics/{topic_id}/subtopics", status_code=201)
def add_subtopic(topic_id: str, body: SubtopicIn, session: Session = Depends(get_session), db: Database = Depends(get_db)):
    doc, topic = _load_topic(db, topic_id, session)
    topic.add_subtopic(body.title)
    return _save_subtopics(db, doc, topic)


@app.patch("/topics/{topic_id}/subtopics/{subtopic_id}")
def toggle_subtopic(
    topic_id: str,
    subtopic_id: str,
    session: Session = Depends(get_session),
    db: Database = Depends(get_db),
):
    doc, topic = _load_topic(db, topic_id, session)
    try:
        topic.toggle_subtopic(subtopic_id)
    except SubtopicNotFound:
        raise HTTPException(status_code=404, detail="Subtopic not found")
    return _save_subtopics(db, doc, topic)


@app.post("/topics/{topic_id}/subtopics/{subtopic_id}/attachment")
def upload_subtopic_attachment(
    topic_id: str,
    subtopic_id: str,
    file: Optional[UploadFile] = File(None),
    session: Session = Depends(get_session),
    db: Database = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    doc, topic = _load_topic(db, topic_id, session)
    try:
        topic.find_subtopic(subtopic_id)
    except SubtopicNotFound:
        raise HTTPException(status_code=404, detail="Subtopic not found")
    topic.attach_to_subtopic(subtopic_id, _read_upload(file, cfg))
    return _save_subtopics(db, doc, topic)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host=settings.host, port=port, log_config=None)
