import logging
from typing import Any, Dict, Literal, Optional, Type

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, find_by_id, now_utc, serialize_doc, to_object_id, total_pages, user_summary
from dependencies import get_current_user, get_db, require_admin, require_staff, user_id_of
from schemas import (
    TARGET_TYPES,
    NewsTarget,
    Report,
    ReportAction,
    ReportReason,
    ReportStatus,
    ReportTarget,
    ReviewTarget,
    UserTarget,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])

ALREADY_REPORTED = "You have already reported this content"


class ReportCreate(BaseModel):
    target: ReportTarget
    reason: ReportReason
    description: str = Field("", max_length=1000)


class ReportUpdate(BaseModel):
    status: Optional[ReportStatus] = None
    resolution: Optional[str] = Field(None, max_length=1000)
    action_taken: Optional[ReportAction] = None


def target_of(doc: Dict[str, Any]):
    """Rebuild the typed target variant stored on a report document."""
    cls: Type[BaseModel] = TARGET_TYPES[doc["target_type"]]
    return cls(id=doc["target_id"])


def resolve_target(db: Database, target) -> Optional[Dict[str, Any]]:
    if isinstance(target, (UserTarget, NewsTarget, ReviewTarget)):
        doc = find_by_id(db, target.collection, target.id, {f: 1 for f in target.public_fields})
        return serialize_doc(doc) if doc else None
    raise TypeError(f"Unhandled report target {target!r}")


def report_out(db: Database, doc: Dict[str, Any], detailed: bool = False) -> Dict[str, Any]:
    report = serialize_doc(doc)
    target = target_of(doc)
    report["target"] = dict(target.model_dump(), collection=target.collection, content=resolve_target(db, target))
    reporter_fields = ("username", "avatar", "email") if detailed else ("username", "avatar")
    report["reporter"] = user_summary(db, doc.get("reporter_id"), fields=reporter_fields)
    report["reviewer"] = user_summary(db, doc.get("reviewed_by"), fields=("username",))
    return report


def get_report_or_404(db: Database, report_id: str) -> Dict[str, Any]:
    doc = db.report.find_one({"_id": to_object_id(report_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Report not found")
    return doc


def breakdown(db: Database, field: str):
    return list(db.report.aggregate([{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}]))


@router.post("/", status_code=201)
def create_report(payload: ReportCreate, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    target = payload.target
    if resolve_target(db, target) is None:
        raise HTTPException(status_code=404, detail="Reported content not found")

    reporter_id = user_id_of(user)
    if db.report.find_one({"reporter_id": reporter_id, "target_type": target.type, "target_id": target.id}):
        raise HTTPException(status_code=400, detail=ALREADY_REPORTED)

    report = Report(
        reporter_id=reporter_id,
        target_type=target.type,
        target_id=target.id,
        reason=payload.reason,
        description=payload.description,
    )
    try:
        doc = create_document(db, "report", report)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail=ALREADY_REPORTED)
    logger.info("User %s reported %s %s (%s)", user.get("username"), target.type, target.id, payload.reason)
    return report_out(db, doc)


@router.get("/")
def list_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[ReportStatus] = None,
    target_type: Optional[Literal["user", "news", "review"]] = None,
    reason: Optional[ReportReason] = None,
    sort_by: Literal["created_at", "updated_at", "status", "reason"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    _: Dict[str, Any] = Depends(require_staff),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    if target_type:
        query["target_type"] = target_type
    if reason:
        query["reason"] = reason

    total = db.report.count_documents(query)
    cursor = (
        db.report.find(query)
        .sort([(sort_by, 1 if sort_order == "asc" else -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {
        "reports": [report_out(db, doc) for doc in cursor],
        "total_pages": total_pages(total, limit),
        "current_page": page,
        "total": total,
    }


@router.get("/stats/overview")
def report_stats(_: Dict[str, Any] = Depends(require_staff), db: Database = Depends(get_db)):
    return {
        "total": db.report.count_documents({}),
        "pending": db.report.count_documents({"status": "pending"}),
        "status_breakdown": breakdown(db, "status"),
        "reason_breakdown": breakdown(db, "reason"),
        "type_breakdown": breakdown(db, "target_type"),
    }


@router.get("/{report_id}")
def get_report(report_id: str, _: Dict[str, Any] = Depends(require_staff), db: Database = Depends(get_db)):
    return report_out(db, get_report_or_404(db, report_id), detailed=True)


@router.put("/{report_id}")
def update_report(
    report_id: str,
    payload: ReportUpdate,
    user: Dict[str, Any] = Depends(require_staff),
    db: Database = Depends(get_db),
):
    report = get_report_or_404(db, report_id)
    update = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if update.get("status") and update["status"] != "pending":
        update["reviewed_by"] = user_id_of(user)
        update["reviewed_at"] = now_utc()
    update["updated_at"] = now_utc()
    doc = db.report.find_one_and_update({"_id": report["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    logger.info("Report %s updated by %s: %s", report_id, user.get("username"), update.get("status", report.get("status")))
    return report_out(db, doc)


@router.delete("/{report_id}")
def delete_report(report_id: str, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    result = db.report.delete_one({"_id": to_object_id(report_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Report not found")
    return {"message": "Report deleted successfully"}
