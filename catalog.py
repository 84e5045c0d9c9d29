import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from slugify import slugify

from database import (
    contains,
    create_document,
    get_documents,
    now_utc,
    serialize_doc,
    to_object_id,
    total_pages,
    user_summary,
)
from dependencies import (
    get_current_user,
    get_db,
    get_optional_user,
    require_admin,
    require_staff,
    user_id_of,
)
from schemas import Anime, AnimeStatus, Character, Movie, Review, Studio, Tag

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/catalog", tags=["catalog"])

ANIME_SORT_FIELDS = {
    "rating": "rating",
    "year": "year",
    "title": "title",
    "episodes": "episodes",
    "views": "view_count",
}
MOVIE_SORTS = {
    "latest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "highest_rated": [("rating", -1)],
}
ANIME_UPDATABLE = [
    "title",
    "synopsis",
    "cover_image",
    "banner_image",
    "episodes",
    "status",
    "genres",
    "year",
    "studio",
    "characters",
]


# -----------------------------
# Schemas (request)
# -----------------------------
class MovieIn(BaseModel):
    title: str
    description: Optional[str] = None
    release_year: Optional[int] = None
    genre: List[str] = Field(default_factory=list)
    rating: Optional[float] = Field(None, ge=0, le=10)
    tags: List[str] = Field(default_factory=list)


class AnimeCreate(BaseModel):
    title: Optional[str] = None
    synopsis: Optional[str] = None
    cover_image: Optional[str] = None
    banner_image: Optional[str] = None
    episodes: Optional[int] = None
    status: Optional[AnimeStatus] = None
    genres: Optional[List[str]] = None
    year: Optional[int] = None
    studio: Optional[Studio] = None
    characters: List[Character] = Field(default_factory=list)


class AnimeUpdate(BaseModel):
    title: Optional[str] = None
    synopsis: Optional[str] = None
    cover_image: Optional[str] = None
    banner_image: Optional[str] = None
    episodes: Optional[int] = None
    status: Optional[AnimeStatus] = None
    genres: Optional[List[str]] = None
    year: Optional[int] = None
    studio: Optional[Studio] = None
    characters: Optional[List[Character]] = None


class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=10)
    title: Optional[str] = None
    body: Optional[str] = None


# -----------------------------
# Helpers
# -----------------------------
def make_slug(title: str) -> str:
    return slugify(f"{title}-{int(time.time() * 1000)}")


def get_or_create_tags(db: Database, names: List[str], created_by: Optional[str]) -> List[str]:
    """Resolve tag names to ids, creating missing tags with an atomic upsert."""
    tag_ids = []
    for name in dict.fromkeys(n.strip() for n in names if n and n.strip()):
        try:
            tag = db.tag.find_one_and_update(
                {"name": name},
                {"$setOnInsert": dict(Tag(name=name, created_by=created_by).model_dump(), created_at=now_utc())},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Lost an upsert race on the unique name index
            tag = db.tag.find_one({"name": name})
        tag_ids.append(str(tag["_id"]))
    return tag_ids


def populate_tags(db: Database, movies: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    wanted = {tid for m in movies for tid in m.get("tag_ids", []) if ObjectId.is_valid(tid)}
    tags = {str(t["_id"]): serialize_doc(t) for t in db.tag.find({"_id": {"$in": [ObjectId(t) for t in wanted]}})}
    out = []
    for doc in movies:
        movie = serialize_doc(doc)
        movie["tags"] = [tags[tid] for tid in movie.get("tag_ids", []) if tid in tags]
        out.append(movie)
    return out


def movie_fields(payload: MovieIn) -> Dict[str, Any]:
    title = payload.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    return {
        "title": title,
        "slug": make_slug(title),
        "description": (payload.description or "").strip(),
        "release_year": payload.release_year,
        "genre": [g.strip() for g in payload.genre if g.strip()],
        "rating": payload.rating,
    }


def validation_message(e: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())


def max_year() -> int:
    return datetime.now(timezone.utc).year + 5


def anime_out(db: Database, doc: Dict[str, Any]) -> Dict[str, Any]:
    anime = serialize_doc(doc)
    anime["added_by"] = user_summary(db, doc.get("added_by"), fields=("username",))
    return anime


def get_anime_or_404(db: Database, anime_id: str) -> Dict[str, Any]:
    doc = db.anime.find_one({"_id": to_object_id(anime_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Anime not found")
    return doc


# -----------------------------
# Movies
# -----------------------------
@router.get("/movies")
def list_movies(
    search: Optional[str] = None,
    sort: Optional[Literal["latest", "oldest", "highest_rated"]] = None,
    genre: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if search:
        query["title"] = contains(search)
    if genre:
        query["genre"] = genre
    cursor = db.movie.find(query)
    if sort:
        cursor = cursor.sort(MOVIE_SORTS[sort])
    return populate_tags(db, list(cursor))


@router.get("/movies/{slug}")
def get_movie(slug: str, db: Database = Depends(get_db)):
    doc = db.movie.find_one({"slug": slug})
    if not doc:
        raise HTTPException(status_code=404, detail="Movie not found")
    return populate_tags(db, [doc])[0]


@router.post("/movies", status_code=201)
def add_movie(payload: MovieIn, user: Dict[str, Any] = Depends(require_staff), db: Database = Depends(get_db)):
    data = movie_fields(payload)
    data["tag_ids"] = get_or_create_tags(db, payload.tags, user.get("username"))
    try:
        doc = create_document(db, "movie", Movie(**data))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Movie with this slug already exists")
    logger.info("Movie %s added by %s", doc["slug"], user.get("username"))
    return {"movie": populate_tags(db, [doc])[0], "message": "Movie added successfully!"}


@router.put("/movies/{movie_id}")
def update_movie(
    movie_id: str,
    payload: MovieIn,
    user: Dict[str, Any] = Depends(require_staff),
    db: Database = Depends(get_db),
):
    oid = to_object_id(movie_id)
    if not db.movie.find_one({"_id": oid}):
        raise HTTPException(status_code=404, detail="Movie not found")
    data = movie_fields(payload)
    data["tag_ids"] = get_or_create_tags(db, payload.tags, user.get("username"))
    data["updated_at"] = now_utc()
    doc = db.movie.find_one_and_update({"_id": oid}, {"$set": data}, return_document=ReturnDocument.AFTER)
    return {"movie": populate_tags(db, [doc])[0], "message": "Movie updated successfully!"}


@router.delete("/movies/{movie_id}")
def delete_movie(movie_id: str, _: Dict[str, Any] = Depends(require_staff), db: Database = Depends(get_db)):
    result = db.movie.delete_one({"_id": to_object_id(movie_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Movie not found")
    return {"movie_id": movie_id, "message": "Movie deleted successfully!"}


@router.get("/tags")
def list_tags(db: Database = Depends(get_db)):
    return [serialize_doc(t) for t in get_documents(db, "tag", sort=[("name", 1)])]


# -----------------------------
# Anime CRUD + listing
# -----------------------------
@router.get("/")
def list_anime(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    genres: Optional[str] = None,
    status: Optional[AnimeStatus] = None,
    year: Optional[int] = None,
    sort_by: str = "rating",
    sort_order: Literal["asc", "desc"] = "desc",
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if search:
        query["$or"] = [
            {"title": contains(search)},
            {"synopsis": contains(search)},
            {"genres": contains(search)},
            {"studio.name": contains(search)},
        ]
    if genres:
        query["genres"] = {"$in": [g.strip() for g in genres.split(",") if g.strip()]}
    if status:
        query["status"] = status
    if year:
        query["year"] = year

    if sort_by in ANIME_SORT_FIELDS:
        sort_spec = [(ANIME_SORT_FIELDS[sort_by], 1 if sort_order == "asc" else -1)]
    else:
        sort_spec = [("created_at", -1)]

    total = db.anime.count_documents(query)
    cursor = db.anime.find(query).sort(sort_spec).skip((page - 1) * limit).limit(limit)
    return {
        "anime": [anime_out(db, x) for x in cursor],
        "total_pages": total_pages(total, limit),
        "current_page": page,
        "total": total,
    }


@router.get("/meta/genres")
def anime_genres(db: Database = Depends(get_db)):
    return sorted(db.anime.distinct("genres"))


@router.get("/meta/studios")
def anime_studios(db: Database = Depends(get_db)):
    return sorted(db.anime.distinct("studio.name"))


@router.get("/{anime_id}")
def get_anime(anime_id: str, _: Optional[Dict[str, Any]] = Depends(get_optional_user), db: Database = Depends(get_db)):
    doc = db.anime.find_one_and_update(
        {"_id": to_object_id(anime_id)},
        {"$inc": {"view_count": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Anime not found")
    return anime_out(db, doc)


@router.post("/", status_code=201)
def create_anime(payload: AnimeCreate, user: Dict[str, Any] = Depends(require_staff), db: Database = Depends(get_db)):
    required = [payload.title, payload.synopsis, payload.cover_image, payload.episodes,
                payload.status, payload.genres, payload.year, payload.studio]
    if any(v is None or v == "" or v == [] for v in required):
        raise HTTPException(status_code=400, detail="All required fields must be provided")
    if payload.year > max_year():
        raise HTTPException(status_code=400, detail=f"year: must be at most {max_year()}")
    try:
        anime = Anime(**payload.model_dump(), added_by=user_id_of(user))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=validation_message(e))
    doc = create_document(db, "anime", anime)
    logger.info("Anime %s created by %s", doc["_id"], user.get("username"))
    return anime_out(db, doc)


@router.put("/{anime_id}")
def update_anime(
    anime_id: str,
    payload: AnimeUpdate,
    _: Dict[str, Any] = Depends(require_staff),
    db: Database = Depends(get_db),
):
    doc = get_anime_or_404(db, anime_id)
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if k in ANIME_UPDATABLE}
    merged = {k: v for k, v in doc.items() if k in Anime.model_fields}
    merged.update(changes)
    try:
        anime = Anime(**merged)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=validation_message(e))
    if "year" in changes and anime.year > max_year():
        raise HTTPException(status_code=400, detail=f"year: must be at most {max_year()}")

    update = {k: v for k, v in anime.model_dump().items() if k in changes}
    update["updated_at"] = now_utc()
    doc = db.anime.find_one_and_update({"_id": doc["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    return anime_out(db, doc)


@router.delete("/{anime_id}")
def delete_anime(anime_id: str, _: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    result = db.anime.delete_one({"_id": to_object_id(anime_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Anime not found")
    return {"message": "Anime deleted successfully"}


# -----------------------------
# Reviews and Ratings
# -----------------------------
@router.get("/{anime_id}/reviews")
def get_reviews(anime_id: str, db: Database = Depends(get_db)):
    get_anime_or_404(db, anime_id)
    items = []
    for doc in db.review.find({"anime_id": anime_id}).sort([("created_at", -1)]):
        review = serialize_doc(doc)
        review["user"] = user_summary(db, doc.get("user_id"))
        items.append(review)
    return {"items": items, "total": len(items)}


@router.post("/{anime_id}/reviews", status_code=201)
def create_or_update_review(
    anime_id: str,
    payload: ReviewCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    anime = get_anime_or_404(db, anime_id)
    uid = user_id_of(user)
    existing = db.review.find_one({"anime_id": anime_id, "user_id": uid})
    if existing:
        db.review.update_one(
            {"_id": existing["_id"]},
            {"$set": {"rating": payload.rating, "title": payload.title, "body": payload.body, "updated_at": now_utc()}},
        )
        inc = {"rating_sum": payload.rating - existing["rating"]}
    else:
        create_document(db, "review", Review(anime_id=anime_id, user_id=uid, **payload.model_dump()))
        inc = {"rating_sum": payload.rating, "total_ratings": 1}

    # rolling average from the sum/count pair
    anime = db.anime.find_one_and_update({"_id": anime["_id"]}, {"$inc": inc}, return_document=ReturnDocument.AFTER)
    count = anime.get("total_ratings", 0)
    rating = round(anime.get("rating_sum", 0) / count, 1) if count else 0
    db.anime.update_one({"_id": anime["_id"]}, {"$set": {"rating": rating}})

    return serialize_doc(db.review.find_one({"anime_id": anime_id, "user_id": uid}))
