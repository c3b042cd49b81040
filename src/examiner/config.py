from __future__ import annotations
import os
from dataclasses import dataclass
from typing import List
from dotenv import load_dotenv

load_dotenv()

def _split_csv_ints(s: str) -> List[int]:
    out = []
    for part in (s or "").split(","):
        part = part.strip()
        if part:
            out.append(int(part))
    return out

def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number") from None
    if value < 0:
        raise RuntimeError(f"{name} must not be negative")
    return value

@dataclass(frozen=True)
class Settings:
    bot_token: str
    admin_ids: List[int]
    database_url: str
    backend: str = "local"  # local|http
    api_base_url: str = "http://localhost:4000/api/v1"
    api_token: str | None = None
    request_timeout_s: float = 10.0
    tick_s: float = 1.0
    flush_timeout_s: float = 5.0
    submit_retry_s: float = 5.0
    ui_default_lang: str = "en"  # en/ar
    content_lang: str = "en"  # en/ar, picks *En/*Ar fields from the API

def load_settings() -> Settings:
    load_dotenv()
    bot_token = os.getenv("BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is required")

    admin_ids = _split_csv_ints(os.getenv("ADMIN_IDS", ""))
    database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/examiner.db")

    backend = os.getenv("BACKEND", "local").strip().lower()
    if backend not in {"local", "http"}:
        raise RuntimeError("BACKEND must be local or http")
    api_base_url = os.getenv("API_BASE_URL", "http://localhost:4000/api/v1").strip()
    api_token = (os.getenv("API_TOKEN") or "").strip() or None

    ui_default_lang = os.getenv("UI_DEFAULT_LANG", "en").strip().lower()
    content_lang = os.getenv("CONTENT_LANG", ui_default_lang).strip().lower()
    for name, value in (("UI_DEFAULT_LANG", ui_default_lang), ("CONTENT_LANG", content_lang)):
        if value not in {"en", "ar"}:
            raise RuntimeError(f"{name} must be en or ar")

    tick_s = _float_env("TICK_S", 1.0)
    if tick_s <= 0:
        raise RuntimeError("TICK_S must be positive")

    return Settings(
        bot_token=bot_token,
        admin_ids=admin_ids,
        database_url=database_url,
        backend=backend,
        api_base_url=api_base_url,
        api_token=api_token,
        request_timeout_s=_float_env("REQUEST_TIMEOUT_S", 10.0),
        tick_s=tick_s,
        flush_timeout_s=_float_env("FLUSH_TIMEOUT_S", 5.0),
        submit_retry_s=_float_env("SUBMIT_RETRY_S", 5.0),
        ui_default_lang=ui_default_lang,
        content_lang=content_lang,
    )
