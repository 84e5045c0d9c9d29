from html import escape
from typing import Any, Dict

_LAYOUT = """\
<!DOCTYPE html>
<html lang="uk">
  <body style="font-family: Arial, sans-serif; background: #f4f4f7; padding: 24px;">
    <div style="max-width: 560px; margin: 0 auto; background: #ffffff; border-radius: 8px; padding: 32px;">
      <h2 style="color: #1f2937;">{heading}</h2>
      <p>Привіт, {name}!</p>
      <p>{intro}</p>
      <p style="text-align: center; margin: 32px 0;">
        <a href="{link}" style="background: #4f46e5; color: #ffffff; padding: 12px 24px; border-radius: 6px; text-decoration: none;">{button}</a>
      </p>
      <p style="color: #6b7280; font-size: 13px;">{footer}</p>
      <p style="color: #6b7280; font-size: 13px;">Connetwork Forum</p>
    </div>
  </body>
</html>
"""


def _display_name(user: Dict[str, Any]) -> str:
    name = user.get("first_name") or user.get("username") or ""
    return escape(name)


def verify_email_template(user: Dict[str, Any], token: str, frontend_url: str) -> str:
    link = f"{frontend_url.rstrip('/')}/email-verify/{token}"
    return _LAYOUT.format(
        heading="Підтвердіть ваш Email",
        name=_display_name(user),
        intro="Дякуємо за реєстрацію! Щоб активувати акаунт, підтвердіть вашу адресу електронної пошти.",
        link=escape(link, quote=True),
        button="Підтвердити Email",
        footer="Якщо ви не реєструвались на нашому форумі, просто проігноруйте цей лист.",
    )


def forgot_password_template(user: Dict[str, Any], token: str, frontend_url: str) -> str:
    link = f"{frontend_url.rstrip('/')}/reset-password/{token}"
    return _LAYOUT.format(
        heading="Скидання паролю",
        name=_display_name(user),
        intro="Ми отримали запит на скидання паролю для вашого акаунту.",
        link=escape(link, quote=True),
        button="Скинути пароль",
        footer="Посилання дійсне обмежений час. Якщо ви не надсилали запит, нічого робити не потрібно.",
    )
