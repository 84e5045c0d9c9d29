import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import create_document, now_utc, serialize_doc
from dependencies import (
    get_current_user,
    get_db,
    get_hasher,
    get_mailer,
    get_optional_user,
    get_settings,
    get_tokens,
)
from email_templates import forgot_password_template, verify_email_template
from mailer import Mailer, MailDeliveryError
from schemas import User
from security import PasswordHasher, TokenError, TokenExpiredError, TokenService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

REFRESH_COOKIE = "refreshToken"
REFRESH_COOKIE_PATH = "/refresh_token"
NOT_AUTHORIZED = "Неавторизовано, ви повинні виконати вхід!"
USER_NOT_FOUND = "Користувача з даним Email не існує!"
EMAIL_MISSING = "Email не вказано. Будь ласка, вкажіть Email!"


# -----------------------------
# Schemas (request)
# -----------------------------
class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class TokenRequest(BaseModel):
    token: Optional[str] = None


class EmailRequest(BaseModel):
    email: Optional[EmailStr] = None


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    new_password: Optional[str] = None
    confirm_new_password: Optional[str] = None


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    avatar: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)


# -----------------------------
# Helpers
# -----------------------------
def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    """User projection safe to hand to clients."""
    user = serialize_doc(doc)
    user.pop("password_hash", None)
    return user


def set_refresh_cookie(response: Response, token: str, max_age: int, settings: Settings) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        max_age=max_age,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
        path=REFRESH_COOKIE_PATH,
    )


def send_mail(mailer: Mailer, recipient: str, subject: str, html: str) -> None:
    try:
        mailer.send(recipient, subject, html)
    except MailDeliveryError:
        raise HTTPException(status_code=500, detail="Не вдалося надіслати Email. Спробуйте пізніше.")


def send_verification_mail(user: Dict[str, Any], tokens: TokenService, mailer: Mailer, settings: Settings) -> None:
    token = tokens.create_email_verify_token(user["email"])
    html = verify_email_template(user, token, settings.frontend_url)
    send_mail(mailer, user["email"], "Підтвердіть ваш Email", html)


def _redeem(decode, token: Optional[str], missing: str, expired: str, invalid: str) -> Dict[str, Any]:
    if not token:
        raise HTTPException(status_code=404, detail=missing)
    try:
        return decode(token)
    except TokenExpiredError:
        raise HTTPException(status_code=400, detail=expired)
    except TokenError as e:
        logger.warning("Rejected token: %s", e)
        raise HTTPException(status_code=400, detail=invalid)


# -----------------------------
# Registration & login
# -----------------------------
@router.post("/register", status_code=201)
def register(
    payload: RegisterRequest,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
    tokens: TokenService = Depends(get_tokens),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    if not all([payload.username, payload.email, payload.password, payload.first_name, payload.last_name]):
        raise HTTPException(status_code=422, detail="Відсутні обов'язкові поля!")
    if db.user.find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="Аккаунт з даним Email вже існує!")
    if db.user.find_one({"username": payload.username}):
        raise HTTPException(status_code=400, detail="Аккаунт з даним нікнеймом вже існує!")

    try:
        user = User(
            email=payload.email,
            username=payload.username,
            password_hash=hasher.hash(payload.password),
            first_name=payload.first_name,
            last_name=payload.last_name,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors()[0]["msg"])
    try:
        doc = create_document(db, "user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Аккаунт з даним Email або нікнеймом вже існує!")
    logger.info("Registered user %s", doc["username"])

    send_verification_mail(doc, tokens, mailer, settings)
    return {
        "message": f"Email був відправлений на: {doc['email']}. Виконуйте інструкції для активації акаунту.",
    }


@router.post("/login")
def login(
    payload: LoginRequest,
    response: Response,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
    tokens: TokenService = Depends(get_tokens),
    settings: Settings = Depends(get_settings),
):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email або пароль відсутні!")
    user = db.user.find_one({"email": payload.email})
    if not user:
        raise HTTPException(status_code=400, detail=USER_NOT_FOUND)
    if not hasher.verify(payload.password, user.get("password_hash", "")):
        logger.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=400, detail="Невірний пароль!")
    if not user.get("is_verified"):
        raise HTTPException(status_code=400, detail="Спершу вам треба активувати ваш аккаунт!")

    access_token = tokens.create_access_token(user)
    refresh_token = tokens.create_refresh_token(user)
    set_refresh_cookie(response, refresh_token, settings.refresh_token_expire_seconds, settings)
    logger.info("User %s logged in", user["username"])
    return {
        "message": "Вхід виконано успішно!",
        "token": access_token,
        "user": public_user(user),
        "is_logged_in": True,
    }


@router.post("/refresh_token")
def refresh_token(
    response: Response,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_tokens),
    settings: Settings = Depends(get_settings),
):
    if not refresh_cookie:
        raise HTTPException(status_code=403, detail=NOT_AUTHORIZED)
    try:
        payload = tokens.decode_refresh(refresh_cookie)
    except TokenError as e:
        logger.warning("Rejected refresh token: %s", e)
        raise HTTPException(status_code=403, detail=NOT_AUTHORIZED)
    user = db.user.find_one({"email": payload.get("email")}, {"password_hash": 0})
    if not user:
        raise HTTPException(status_code=403, detail=NOT_AUTHORIZED)

    new_refresh = tokens.rotate_refresh_token(user, payload)
    set_refresh_cookie(response, new_refresh, tokens.seconds_remaining(payload), settings)
    return {
        "user": public_user(user),
        "token": tokens.create_access_token(user),
    }


@router.post("/logout")
def logout(
    response: Response,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    settings: Settings = Depends(get_settings),
):
    if not user:
        raise HTTPException(status_code=400, detail="Ви не в системі!")
    response.delete_cookie(
        REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )
    logger.info("User %s logged out", user["username"])
    return {"message": "Користувач успішно вийшов з системи!"}


# -----------------------------
# Email verification
# -----------------------------
@router.post("/email-verify")
def email_verify(
    payload: TokenRequest,
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_tokens),
):
    claims = _redeem(
        tokens.decode_email_verify,
        payload.token,
        missing="Неможливо знайти токен підтвердження Email. Будь ласка, запросіть інше посилання на активацію!",
        expired="Токен перевірки Email застарів. Будь ласка, запросіть ще одне посилання на активацію!",
        invalid="Токен перевірки Email недійсний. Будь ласка, запросіть ще одне посилання на активацію!",
    )
    email = claims.get("email")
    user = db.user.find_one({"email": email}, {"password_hash": 0})
    if not user:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    if user.get("is_verified"):
        raise HTTPException(status_code=400, detail="Ваш Email вже підтвержений!")
    db.user.update_one({"_id": user["_id"]}, {"$set": {"is_verified": True, "updated_at": now_utc()}})
    logger.info("Verified email for %s", email)
    return {"message": "Ваш Email успішно верифіковано!"}


@router.post("/send-email-verification")
def send_email_verification(
    payload: EmailRequest,
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_tokens),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    if not payload.email:
        raise HTTPException(status_code=400, detail=EMAIL_MISSING)
    user = db.user.find_one({"email": payload.email}, {"password_hash": 0})
    if not user:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    if user.get("is_verified"):
        raise HTTPException(status_code=400, detail="Ваш email вже верифіковано!")
    send_verification_mail(user, tokens, mailer, settings)
    return {"message": f"Посилання для активації було відправлено на: {payload.email}"}


# -----------------------------
# Password reset
# -----------------------------
@router.post("/forgot-password")
def forgot_password(
    payload: EmailRequest,
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_tokens),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    if not payload.email:
        raise HTTPException(status_code=400, detail=EMAIL_MISSING)
    user = db.user.find_one({"email": payload.email}, {"password_hash": 0})
    if not user:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    token = tokens.create_password_reset_token(payload.email)
    send_mail(mailer, payload.email, "Скинути пароль", forgot_password_template(user, token, settings.frontend_url))
    return {"message": f"Email для відновлення паролю відправлено на: {payload.email}"}


@router.post("/reset-password")
def reset_password(
    payload: ResetPasswordRequest,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
    tokens: TokenService = Depends(get_tokens),
):
    claims = _redeem(
        tokens.decode_password_reset,
        payload.token,
        missing="Токен для відновлення паролю не знайдено!",
        expired="Токен для відновлення паролю більше недійсний, будь ласка, запросіть новий!",
        invalid="Токен для відновлення паролю невірний, будь ласка, запросіть новий!",
    )
    new_password = (payload.new_password or "").strip()
    confirm = (payload.confirm_new_password or "").strip()
    if not new_password or not confirm:
        raise HTTPException(status_code=404, detail="Ви повинні ввести обидва паролі!")
    if new_password != confirm:
        raise HTTPException(status_code=404, detail="Обидва паролі повинні бути однакові!")

    email = claims.get("email")
    result = db.user.update_one(
        {"email": email},
        {"$set": {"password_hash": hasher.hash(new_password), "updated_at": now_utc()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    logger.info("Password reset for %s", email)
    return {"message": "Ваш пароль було скинуто успішно"}


# -----------------------------
# Profile
# -----------------------------
@router.get("/me")
def me(current_user: Dict[str, Any] = Depends(get_current_user)):
    return public_user(current_user)


@router.patch("/me")
def update_me(
    update: ProfileUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    update_dict = update.model_dump(exclude_none=True)
    update_dict["updated_at"] = now_utc()
    db.user.update_one({"_id": current_user["_id"]}, {"$set": update_dict})
    fresh = db.user.find_one({"_id": current_user["_id"]})
    return public_user(fresh)
