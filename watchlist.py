import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import contains, create_document, get_documents, now_utc, serialize_doc, to_object_id, total_pages, user_summary
from dependencies import get_current_user, get_db, get_optional_user, user_id_of
from schemas import WatchStatus, Watchlist, WatchlistItem

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/watchlist", tags=["watchlist"])

ANIME_FIELDS = ("title", "cover_image", "rating", "year", "status", "episodes", "genres")
DUPLICATE_NAME = "You already have a watchlist with this name"


class WatchlistCreate(BaseModel):
    name: Optional[str] = None
    description: str = Field("", max_length=500)
    is_public: bool = True
    tags: List[str] = []


class WatchlistUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_public: Optional[bool] = None
    tags: Optional[List[str]] = None


class WatchlistEntryIn(BaseModel):
    status: WatchStatus = "plan-to-watch"
    user_rating: Optional[int] = Field(None, ge=1, le=10)
    progress: int = Field(0, ge=0)


class WatchlistEntryUpdate(BaseModel):
    status: Optional[WatchStatus] = None
    user_rating: Optional[int] = Field(None, ge=1, le=10)
    progress: Optional[int] = Field(None, ge=0)


def watchlist_out(db: Database, doc: Dict[str, Any]) -> Dict[str, Any]:
    watchlist = serialize_doc(doc)
    entries = doc.get("anime", [])
    ids = [ObjectId(e["anime_id"]) for e in entries if ObjectId.is_valid(e.get("anime_id"))]
    projection = {f: 1 for f in ANIME_FIELDS}
    anime = {str(a["_id"]): serialize_doc(a) for a in db.anime.find({"_id": {"$in": ids}}, projection)}
    watchlist["anime"] = [dict(e, anime=anime.get(e["anime_id"])) for e in entries]
    watchlist["user"] = user_summary(db, doc.get("user_id"))
    watchlist["anime_count"] = len(entries)
    watchlist["follower_count"] = len(doc.get("followers", []))
    return watchlist


def get_watchlist_or_404(db: Database, watchlist_id: str) -> Dict[str, Any]:
    doc = db.watchlist.find_one({"_id": to_object_id(watchlist_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Watchlist not found")
    return doc


def ensure_owner(watchlist: Dict[str, Any], user: Dict[str, Any], action: str) -> None:
    if watchlist.get("user_id") != user_id_of(user):
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this watchlist")


def save_entries(db: Database, watchlist: Dict[str, Any], entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    return db.watchlist.find_one_and_update(
        {"_id": watchlist["_id"]},
        {"$set": {"anime": entries, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )


@router.get("/")
def my_watchlists(user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    docs = get_documents(db, "watchlist", {"user_id": user_id_of(user)}, sort=[("updated_at", -1)])
    return [watchlist_out(db, doc) for doc in docs]


@router.get("/public")
def public_watchlists(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    user_id: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"is_public": True}
    if user_id:
        query["user_id"] = user_id
    if search:
        query["$or"] = [{"name": contains(search)}, {"description": contains(search)}]

    total = db.watchlist.count_documents(query)
    cursor = db.watchlist.find(query).sort([("updated_at", -1)]).skip((page - 1) * limit).limit(limit)
    return {
        "watchlists": [watchlist_out(db, doc) for doc in cursor],
        "total_pages": total_pages(total, limit),
        "current_page": page,
        "total": total,
    }


@router.get("/{watchlist_id}")
def get_watchlist(
    watchlist_id: str,
    viewer: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    doc = get_watchlist_or_404(db, watchlist_id)
    if not doc.get("is_public") and (not viewer or doc.get("user_id") != user_id_of(viewer)):
        raise HTTPException(status_code=403, detail="This watchlist is private")
    return watchlist_out(db, doc)


@router.post("/", status_code=201)
def create_watchlist(payload: WatchlistCreate, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Watchlist name is required")
    if len(name) > 100:
        raise HTTPException(status_code=400, detail="Watchlist name must be at most 100 characters")
    uid = user_id_of(user)
    if db.watchlist.find_one({"user_id": uid, "name": name}):
        raise HTTPException(status_code=400, detail=DUPLICATE_NAME)
    watchlist = Watchlist(
        user_id=uid,
        name=name,
        description=payload.description,
        is_public=payload.is_public,
        tags=payload.tags,
    )
    try:
        doc = create_document(db, "watchlist", watchlist)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail=DUPLICATE_NAME)
    return watchlist_out(db, doc)


@router.put("/{watchlist_id}")
def update_watchlist(
    watchlist_id: str,
    payload: WatchlistUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    watchlist = get_watchlist_or_404(db, watchlist_id)
    ensure_owner(watchlist, user, "update")

    update = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    name = (update.pop("name", "") or "").strip()
    if name and name != watchlist["name"]:
        clash = db.watchlist.find_one({"user_id": user_id_of(user), "name": name, "_id": {"$ne": watchlist["_id"]}})
        if clash:
            raise HTTPException(status_code=400, detail=DUPLICATE_NAME)
        update["name"] = name
    update["updated_at"] = now_utc()
    try:
        doc = db.watchlist.find_one_and_update({"_id": watchlist["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail=DUPLICATE_NAME)
    return watchlist_out(db, doc)


@router.delete("/{watchlist_id}")
def delete_watchlist(watchlist_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    watchlist = get_watchlist_or_404(db, watchlist_id)
    ensure_owner(watchlist, user, "delete")
    db.watchlist.delete_one({"_id": watchlist["_id"]})
    return {"message": "Watchlist deleted successfully"}


# -----------------------------
# Entries
# -----------------------------
@router.post("/{watchlist_id}/anime/{anime_id}")
def add_anime(
    watchlist_id: str,
    anime_id: str,
    payload: Optional[WatchlistEntryIn] = None,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    payload = payload or WatchlistEntryIn()
    watchlist = get_watchlist_or_404(db, watchlist_id)
    ensure_owner(watchlist, user, "modify")
    if not db.anime.find_one({"_id": to_object_id(anime_id)}):
        raise HTTPException(status_code=404, detail="Anime not found")
    entries = watchlist.get("anime", [])
    if any(e.get("anime_id") == anime_id for e in entries):
        raise HTTPException(status_code=400, detail="Anime is already in this watchlist")

    entry = WatchlistItem(anime_id=anime_id, added_at=now_utc(), **payload.model_dump())
    doc = save_entries(db, watchlist, entries + [entry.model_dump()])
    return watchlist_out(db, doc)


@router.put("/{watchlist_id}/anime/{anime_id}")
def update_anime_entry(
    watchlist_id: str,
    anime_id: str,
    payload: WatchlistEntryUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    watchlist = get_watchlist_or_404(db, watchlist_id)
    ensure_owner(watchlist, user, "modify")
    entries = watchlist.get("anime", [])
    entry = next((e for e in entries if e.get("anime_id") == anime_id), None)
    if entry is None:
        raise HTTPException(status_code=404, detail="Anime not found in this watchlist")
    entry.update({k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None})
    doc = save_entries(db, watchlist, entries)
    return watchlist_out(db, doc)


@router.delete("/{watchlist_id}/anime/{anime_id}")
def remove_anime(
    watchlist_id: str,
    anime_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    watchlist = get_watchlist_or_404(db, watchlist_id)
    ensure_owner(watchlist, user, "modify")
    entries = [e for e in watchlist.get("anime", []) if e.get("anime_id") != anime_id]
    save_entries(db, watchlist, entries)
    return {"message": "Anime removed from watchlist successfully"}


@router.post("/{watchlist_id}/follow")
def toggle_follow(watchlist_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    watchlist = get_watchlist_or_404(db, watchlist_id)
    if not watchlist.get("is_public"):
        raise HTTPException(status_code=403, detail="Cannot follow private watchlist")
    uid = user_id_of(user)
    following = uid in watchlist.get("followers", [])
    op = {"$pull": {"followers": uid}} if following else {"$addToSet": {"followers": uid}}
    doc = db.watchlist.find_one_and_update({"_id": watchlist["_id"]}, op, return_document=ReturnDocument.AFTER)
    return {"following": not following, "follower_count": len(doc.get("followers", []))}
