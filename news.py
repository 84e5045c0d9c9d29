import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database

from database import contains, create_document, now_utc, serialize_doc, to_object_id, total_pages, user_summary
from dependencies import get_current_user, get_db, get_optional_user, require_staff, user_id_of
from schemas import News, NewsComment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/news", tags=["news"])


class NewsCreate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    image: Optional[str] = None
    tags: List[str] = []
    is_published: bool = True


class NewsUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    image: Optional[str] = None
    tags: Optional[List[str]] = None
    is_published: Optional[bool] = None


class CommentCreate(BaseModel):
    content: Optional[str] = None


def article_out(
    db: Database,
    doc: Dict[str, Any],
    viewer: Optional[Dict[str, Any]],
    with_comments: bool = False,
) -> Dict[str, Any]:
    article = serialize_doc(doc)
    likes = doc.get("likes", [])
    article["author"] = user_summary(db, doc.get("author_id"))
    article["like_count"] = len(likes)
    article["is_liked"] = user_id_of(viewer) in likes if viewer else False
    if with_comments:
        article["comments"] = [comment_out(db, c) for c in doc.get("comments", [])]
    return article


def comment_out(db: Database, comment: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(comment)
    out["user"] = user_summary(db, comment.get("user_id"))
    return out


def get_article_or_404(db: Database, news_id: str) -> Dict[str, Any]:
    doc = db.news.find_one({"_id": to_object_id(news_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="News article not found")
    return doc


def ensure_author_or_admin(article: Dict[str, Any], user: Dict[str, Any], action: str) -> None:
    if article.get("author_id") != user_id_of(user) and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this article")


@router.get("/")
def list_news(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    tags: Optional[str] = None,
    viewer: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"is_published": True}
    if search:
        query["$or"] = [{"title": contains(search)}, {"content": contains(search)}]
    if tags:
        query["tags"] = {"$in": [t.strip() for t in tags.split(",") if t.strip()]}

    total = db.news.count_documents(query)
    cursor = db.news.find(query, {"comments": 0}).sort([("published_at", -1)]).skip((page - 1) * limit).limit(limit)
    return {
        "news": [article_out(db, doc, viewer) for doc in cursor],
        "total_pages": total_pages(total, limit),
        "current_page": page,
        "total": total,
    }


@router.get("/meta/tags")
def news_tags(db: Database = Depends(get_db)):
    return sorted(db.news.distinct("tags"))


@router.get("/{news_id}")
def get_news(news_id: str, viewer: Optional[Dict[str, Any]] = Depends(get_optional_user), db: Database = Depends(get_db)):
    doc = db.news.find_one_and_update(
        {"_id": to_object_id(news_id), "is_published": True},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="News article not found")
    return article_out(db, doc, viewer, with_comments=True)


@router.post("/", status_code=201)
def create_news(payload: NewsCreate, user: Dict[str, Any] = Depends(require_staff), db: Database = Depends(get_db)):
    if not payload.title or not payload.content:
        raise HTTPException(status_code=400, detail="Title and content are required")
    article = News(
        title=payload.title,
        content=payload.content,
        author_id=user_id_of(user),
        image=payload.image,
        tags=payload.tags,
        is_published=payload.is_published,
        published_at=now_utc() if payload.is_published else None,
    )
    doc = create_document(db, "news", article)
    logger.info("News %s created by %s", doc["_id"], user.get("username"))
    return article_out(db, doc, user, with_comments=True)


@router.put("/{news_id}")
def update_news(
    news_id: str,
    payload: NewsUpdate,
    user: Dict[str, Any] = Depends(require_staff),
    db: Database = Depends(get_db),
):
    article = get_article_or_404(db, news_id)
    ensure_author_or_admin(article, user, "update")

    update = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if update.get("is_published") and not article.get("published_at"):
        update["published_at"] = now_utc()
    update["updated_at"] = now_utc()
    doc = db.news.find_one_and_update({"_id": article["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    return article_out(db, doc, user, with_comments=True)


@router.delete("/{news_id}")
def delete_news(news_id: str, user: Dict[str, Any] = Depends(require_staff), db: Database = Depends(get_db)):
    article = get_article_or_404(db, news_id)
    ensure_author_or_admin(article, user, "delete")
    db.news.delete_one({"_id": article["_id"]})
    return {"message": "News article deleted successfully"}


# -----------------------------
# Likes & comments
# -----------------------------
@router.post("/{news_id}/like")
def toggle_like(news_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    article = get_article_or_404(db, news_id)
    uid = user_id_of(user)
    liked = uid in article.get("likes", [])
    op = {"$pull": {"likes": uid}} if liked else {"$addToSet": {"likes": uid}}
    doc = db.news.find_one_and_update({"_id": article["_id"]}, op, return_document=ReturnDocument.AFTER)
    return {"liked": not liked, "like_count": len(doc.get("likes", []))}


@router.post("/{news_id}/comments", status_code=201)
def add_comment(
    news_id: str,
    payload: CommentCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not payload.content or not payload.content.strip():
        raise HTTPException(status_code=400, detail="Comment content is required")
    article = get_article_or_404(db, news_id)
    comment = NewsComment(
        id=str(ObjectId()),
        user_id=user_id_of(user),
        content=payload.content,
        created_at=now_utc(),
    ).model_dump()
    db.news.update_one({"_id": article["_id"]}, {"$push": {"comments": comment}})
    return comment_out(db, comment)


@router.delete("/{news_id}/comments/{comment_id}")
def delete_comment(
    news_id: str,
    comment_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    article = get_article_or_404(db, news_id)
    comment = next((c for c in article.get("comments", []) if c.get("id") == comment_id), None)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.get("user_id") != user_id_of(user) and user.get("role") not in ("admin", "moderator"):
        raise HTTPException(status_code=403, detail="Not authorized to delete this comment")
    remaining = [c for c in article["comments"] if c.get("id") != comment_id]
    db.news.update_one({"_id": article["_id"]}, {"$set": {"comments": remaining}})
    return {"message": "Comment deleted successfully"}
