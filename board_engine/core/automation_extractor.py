"""Infer a recurring automation from a chat instruction.

Only "create" mode requests are scanned. A match registers a disabled
automation with a short confirmation window and appends a structured trailer
to the reply that the scheduler service reads to auto-enable it.
"""

import asyncio
import json
import logging
import re
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from board_engine.core.config import Settings, get_settings
from board_engine.core.logging import get_logger, log_with_context
from board_engine.core.schemas_chat2edit import AutomationSpec, AutomationTaskStep, CronInference
from board_engine.core.text import is_chinese_text
from board_engine.db.automations import create_automation, trigger_scheduler_resync

logger = get_logger(__name__)

META_DELIMITER = "\n---AIPERSONA_META---\n"
WEBHOOK_PATH = "/api/automations/webhook"
GEOIP_TIMEOUT_SECONDS = 1.2

CHINESE_CRON_RE = re.compile(
    r"(每天|每日)\s*(早上|上午|中午|下午|晚上|夜里|凌晨)?\s*(\d{1,2})"
    r"(?:\s*[:：]\s*(\d{1,2}))?\s*(?:点|时)?(?:\s*(\d{1,2})\s*分?)?"
)
CHINESE_PM_PERIODS = {"下午", "晚上", "夜里", "中午"}

ENGLISH_DAILY_RE = re.compile(r"(every\s+day|daily|each\s+day)", re.IGNORECASE)
ENGLISH_CRON_PATTERNS = [
    re.compile(r"\b(?:every\s+day|daily|each\s+day)\b[\s,]*(?:at\s*)?(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b[\s,]*(?:every\s+day|daily|each\s+day)\b", re.IGNORECASE),
    re.compile(r"\bat\s+(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b[\s,]*(?:every\s+day|daily|each\s+day)\b", re.IGNORECASE),
]

TIMEZONE_HEADERS = ("x-vercel-ip-timezone", "cf-timezone", "x-timezone")
COUNTRY_HEADERS = ("x-vercel-ip-country", "cf-ipcountry", "x-country-code")
CLIENT_IP_HEADERS = ("x-real-ip", "cf-connecting-ip", "x-client-ip", "x-forwarded", "forwarded-for", "forwarded")

COUNTRY_TIMEZONES = {
    "CN": "Asia/Shanghai",
    "HK": "Asia/Hong_Kong",
    "TW": "Asia/Taipei",
    "MO": "Asia/Macau",
    "JP": "Asia/Tokyo",
    "KR": "Asia/Seoul",
    "SG": "Asia/Singapore",
    "IN": "Asia/Kolkata",
    "TH": "Asia/Bangkok",
    "VN": "Asia/Ho_Chi_Minh",
    "ID": "Asia/Jakarta",
    "PH": "Asia/Manila",
    "AU": "Australia/Sydney",
    "NZ": "Pacific/Auckland",
    "GB": "Europe/London",
    "IE": "Europe/Dublin",
    "FR": "Europe/Paris",
    "DE": "Europe/Berlin",
    "ES": "Europe/Madrid",
    "IT": "Europe/Rome",
    "NL": "Europe/Amsterdam",
    "BE": "Europe/Brussels",
    "CH": "Europe/Zurich",
    "AT": "Europe/Vienna",
    "SE": "Europe/Stockholm",
    "NO": "Europe/Oslo",
    "DK": "Europe/Copenhagen",
    "FI": "Europe/Helsinki",
    "PL": "Europe/Warsaw",
    "CZ": "Europe/Prague",
    "PT": "Europe/Lisbon",
    "RU": "Europe/Moscow",
    "TR": "Europe/Istanbul",
    "IL": "Asia/Jerusalem",
    "SA": "Asia/Riyadh",
    "AE": "Asia/Dubai",
    "ZA": "Africa/Johannesburg",
    "NG": "Africa/Lagos",
    "EG": "Africa/Cairo",
    "BR": "America/Sao_Paulo",
    "AR": "America/Argentina/Buenos_Aires",
    "CL": "America/Santiago",
    "CO": "America/Bogota",
    "PE": "America/Lima",
    "MX": "America/Mexico_City",
    "CA": "America/Toronto",
    "US": "America/New_York",
}

TASK_PLANS = {
    "ai_news_briefing": ["检索AI新闻源", "生成要点摘要", "保存到资源库"],
    "competitor_monitor": ["解析监控目标", "拉取最新信息", "生成摘要报告", "保存到资源库"],
    "other": ["执行自动化任务"],
}


# =========================
# Schedule parsing
# =========================


def parse_cron_chinese(text: str) -> CronInference | None:
    """``每天/每日`` + optional period of day + hour[:minute] -> ``m h * * *``."""
    raw = text or ""
    if "每天" not in raw and "每日" not in raw:
        return None
    match = CHINESE_CRON_RE.search(raw)
    if not match:
        return None

    period = match.group(2) or ""
    hour = int(match.group(3))
    minute_text = match.group(4) or match.group(5)
    minute = int(minute_text) if minute_text else 0
    if hour > 23 or minute > 59:
        return None

    if period in CHINESE_PM_PERIODS and hour < 12:
        hour += 12
    if period == "凌晨" and hour == 12:
        hour = 0
    return CronInference(cron=f"{minute} {hour} * * *", timezone_hint="Asia/Shanghai")


def parse_cron_english(text: str) -> CronInference | None:
    """``every day|daily|each day`` with ``at H[:MM] [am|pm]`` in either order."""
    raw = (text or "").strip()
    if not raw or not ENGLISH_DAILY_RE.search(raw):
        return None

    match = None
    for pattern in ENGLISH_CRON_PATTERNS:
        match = pattern.search(raw)
        if match:
            break
    if not match:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    ampm = (match.group(3) or "").lower()
    if minute > 59:
        return None

    if ampm:
        if hour < 1 or hour > 12:
            return None
        if ampm == "am" and hour == 12:
            hour = 0
        elif ampm == "pm" and hour != 12:
            hour += 12
    elif hour > 23:
        return None
    return CronInference(cron=f"{minute} {hour} * * *", timezone_hint="UTC")


def infer_cron(text: str) -> CronInference | None:
    return parse_cron_chinese(text) or parse_cron_english(text)


# =========================
# Timezone inference
# =========================


def _header(headers: Mapping[str, str], names: tuple[str, ...]) -> str:
    for name in names:
        value = (headers.get(name) or "").strip()
        if value:
            return value
    return ""


def is_valid_timezone_name(value: str) -> bool:
    value = (value or "").strip()
    return bool(value) and "/" in value and not re.search(r"\s", value)


def get_client_ip(headers: Mapping[str, str]) -> str:
    forwarded = _header(headers, ("x-forwarded-for",))
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return _header(headers, CLIENT_IP_HEADERS)


def timezone_for_country(country: str | None) -> str | None:
    return COUNTRY_TIMEZONES.get((country or "").strip().upper())


async def lookup_country_by_ip(ip: str, settings: Settings | None = None) -> str | None:
    """Best-effort GeoIP lookup; None on any failure."""
    if not ip:
        return None
    settings = settings or get_settings()
    url = settings.GEOIP_LOOKUP_URL.format(ip=ip)
    try:
        async with httpx.AsyncClient(timeout=GEOIP_TIMEOUT_SECONDS) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
        if response.status_code >= 400:
            return None
        code = str((response.json() or {}).get("country_code") or "").strip().upper()
        return code or None
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.debug(f"GeoIP lookup failed for {ip}: {e}")
        return None


async def infer_timezone(headers: Mapping[str, str], fallback: str, settings: Settings | None = None) -> str:
    """
    Resolve the automation timezone.

    Order: explicit timezone header, country header (or GeoIP of the client
    IP) mapped through the country table, then ``fallback``.
    """
    headers = {k.lower(): v for k, v in headers.items()}
    direct = _header(headers, TIMEZONE_HEADERS)
    if direct and is_valid_timezone_name(direct):
        return direct

    country = _header(headers, COUNTRY_HEADERS).upper()
    if not country:
        country = await lookup_country_by_ip(get_client_ip(headers), settings) or ""
    return timezone_for_country(country) or fallback


# =========================
# Automation spec
# =========================


def infer_automation_kind(message: str) -> tuple[str, str]:
    """Classify the instruction; returns (kind, target)."""
    raw = (message or "").strip()
    lower = raw.lower()
    if re.search(r"早报|新闻|资讯", raw) and ("AI" in raw or "ai" in raw or "人工智能" in raw):
        return "ai_news_briefing", "AI新闻早报"
    if "竞品" in raw or "竞对" in raw or "competitor" in lower:
        return "competitor_monitor", raw[:80]
    return "other", raw[:80]


def automation_name(kind: str, target: str, message: str) -> str:
    if kind == "ai_news_briefing":
        return "AI新闻早报"
    if kind == "competitor_monitor":
        return f"竞品监控：{target}"
    return f"自动化任务：{(message or '')[:24]}"


def build_automation_spec(
    message: str,
    inferred: CronInference,
    tz: str | None,
    model_key: str | None,
    confirm_seconds: int,
    now: datetime | None = None,
) -> AutomationSpec:
    kind, target = infer_automation_kind(message)
    now = now or datetime.now(timezone.utc)
    internal: dict[str, Any] = {"kind": kind, "source": "board", "model_key": model_key or None}
    internal["topic" if kind == "ai_news_briefing" else "target"] = target
    return AutomationSpec(
        id=str(uuid.uuid4()),
        name=automation_name(kind, target, message),
        kind=kind,
        cron=inferred.cron,
        timezone=tz or None,
        task_plan=[AutomationTaskStep(title=title) for title in TASK_PLANS[kind]],
        confirm_after_seconds=confirm_seconds,
        auto_confirm=True,
        enabled=False,
        confirm_at=(now + timedelta(seconds=confirm_seconds)).isoformat(),
        internal=internal,
    )


def countdown_note(message: str, seconds: int) -> tuple[str, str]:
    """Localized countdown note and the marker that shows it is already present."""
    if is_chinese_text(message):
        marker = f"{seconds}秒后"
        return f"\n\n我将于{marker}按以上配置创建并启用该自动化任务；如需取消或修改，请在倒计时结束前告知我。", marker
    marker = f"in {seconds} seconds"
    return (
        f"\n\nI will create and enable this automation with the settings above {marker}; "
        "tell me before the countdown ends if you want to cancel or change it.",
        marker,
    )


def append_automation_trailer(reply: str, spec: AutomationSpec, message: str) -> str:
    """Add the countdown note (once) and the structured meta trailer."""
    note, marker = countdown_note(message, spec.confirm_after_seconds)
    if marker not in reply:
        reply = f"{reply}{note}"
    meta = {
        "task_plan": [step.model_dump() for step in spec.task_plan],
        "automation": {
            "id": spec.id,
            "name": spec.name,
            "cron": spec.cron,
            "enabled": spec.enabled,
            "auto_confirm": spec.auto_confirm,
            "confirm_timeout_seconds": spec.confirm_after_seconds,
            "confirm_at": spec.confirm_at,
        },
    }
    return f"{reply}{META_DELIMITER}{json.dumps(meta, ensure_ascii=False)}"


def normalize_origin(origin: str | None) -> str:
    return (origin or "").strip().rstrip("/")


async def maybe_register_automation(
    supabase: Any,
    user_id: str,
    message: str,
    reply: str,
    headers: Mapping[str, str],
    origin: str | None,
    model_key: str | None,
    task_id: str,
    settings: Settings | None = None,
) -> tuple[str, AutomationSpec | None]:
    """
    Register an automation when the instruction describes a daily schedule.

    Never raises: registration failures are logged and the reply is returned
    unchanged.

    Args:
        supabase: Service-role Supabase client
        user_id: Owner
        message: The user's instruction
        reply: Reply text so far
        headers: Request headers (timezone, country and client IP hints)
        origin: Public callback origin (falls back to PUBLIC_SITE_URL)
        model_key: Model the automation should reuse
        task_id: Correlation id for logs
        settings: Optional settings override

    Returns:
        (reply with trailer, spec) or (reply, None) when nothing was registered
    """
    settings = settings or get_settings()
    inferred = infer_cron(message)
    origin = normalize_origin(origin) or normalize_origin(settings.PUBLIC_SITE_URL)
    if inferred is None or not origin:
        return reply, None

    try:
        tz = await infer_timezone(headers, inferred.timezone_hint, settings)
        spec = build_automation_spec(message, inferred, tz, model_key, settings.AUTOMATION_CONFIRM_SECONDS)
        await asyncio.to_thread(create_automation, supabase, user_id, spec, f"{origin}{WEBHOOK_PATH}")
    except Exception as e:
        log_with_context(logger, logging.ERROR, "automation_register_failed", task_id=task_id, error=str(e))
        return reply, None

    await trigger_scheduler_resync()
    log_with_context(
        logger, logging.INFO, "automation_registered", task_id=task_id, automation_id=spec.id, cron=spec.cron
    )
    return append_automation_trailer(reply, spec, message), spec
