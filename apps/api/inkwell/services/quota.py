from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func
from sqlmodel import Session, select

from inkwell.core.auth import AuthPrincipal, normalize_tier
from inkwell.core.config import settings
from inkwell.core.errors import QuotaExceededError
from inkwell.models import AIRequestLog, UserProfile

_LOGGER = logging.getLogger(__name__)

WORD_LIMIT_REASON = "Monthly AI word limit reached"
REQUEST_LIMIT_REASON = "Monthly AI request limit reached"


@dataclass(frozen=True)
class QuotaCheck:
    allowed: bool
    reason: str | None
    limit: int
    used: int
    remaining_words: int
    remaining_requests: int
    request_limit: int = 0
    requests_used: int = 0

    @property
    def percent_used(self) -> float:
        if self.limit <= 0:
            return 0.0
        return round(min(self.used / self.limit, 1.0) * 100, 2)


def count_words(text: str | None) -> int:
    return len(str(text or "").split())


def current_period(now: datetime | None = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m")


def _period_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _tier_limit(mapping: dict[str, str], tier: str) -> int:
    raw = mapping.get(tier, mapping.get("free", "0"))
    try:
        return max(int(raw), 0)
    except (TypeError, ValueError):
        return 0


def word_limit_for_tier(tier: str | None) -> int:
    return _tier_limit(settings.tier_monthly_word_limits, normalize_tier(tier))


def request_limit_for_tier(tier: str | None) -> int:
    return _tier_limit(settings.tier_monthly_request_limits, normalize_tier(tier))


def get_or_create_profile(session: Session, user_id: str, *, now: datetime | None = None) -> UserProfile:
    period = current_period(now)
    profile = session.exec(select(UserProfile).where(UserProfile.user_id == user_id)).first()
    if profile is None:
        profile = UserProfile(user_id=user_id, usage_period=period)
        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile
    if profile.usage_period != period:
        profile.ai_words_used_this_month = 0
        profile.usage_period = period
        profile.updated_at = datetime.now(timezone.utc)
        session.add(profile)
        session.commit()
        session.refresh(profile)
    return profile


def resolve_user_tier(session: Session, principal: AuthPrincipal) -> str:
    if principal.tier:
        return normalize_tier(principal.tier)
    profile = get_or_create_profile(session, principal.user_id)
    return normalize_tier(profile.subscription_tier)


def count_requests_this_month(session: Session, user_id: str, *, now: datetime | None = None) -> int:
    start = _period_start(now or datetime.now(timezone.utc))
    stmt = (
        select(func.count())
        .select_from(AIRequestLog)
        .where(
            AIRequestLog.user_id == user_id,
            AIRequestLog.status == "succeeded",
            AIRequestLog.created_at >= start,
        )
    )
    return int(session.exec(stmt).one() or 0)


def check_generation_quota(
    session: Session,
    user_id: str,
    tier: str | None,
    *,
    now: datetime | None = None,
) -> QuotaCheck:
    profile = get_or_create_profile(session, user_id, now=now)
    word_limit = word_limit_for_tier(tier)
    request_limit = request_limit_for_tier(tier)
    words_used = max(int(profile.ai_words_used_this_month or 0), 0)
    requests_used = count_requests_this_month(session, user_id, now=now)

    reason: str | None = None
    if word_limit and words_used >= word_limit:
        reason = WORD_LIMIT_REASON
    elif request_limit and requests_used >= request_limit:
        reason = REQUEST_LIMIT_REASON

    return QuotaCheck(
        allowed=reason is None,
        reason=reason,
        limit=word_limit,
        used=words_used,
        remaining_words=max(word_limit - words_used, 0),
        remaining_requests=max(request_limit - requests_used, 0),
        request_limit=request_limit,
        requests_used=requests_used,
    )


def enforce_generation_quota(session: Session, user_id: str, tier: str | None) -> QuotaCheck:
    check = check_generation_quota(session, user_id, tier)
    if check.allowed:
        return check
    _LOGGER.info("quota denied user=%s tier=%s reason=%s", user_id, tier, check.reason)
    if check.reason == WORD_LIMIT_REASON:
        raise QuotaExceededError(
            f"{check.reason}. Upgrade your plan to keep writing.",
            limit=check.limit,
            used=check.used,
            quota="words",
        )
    raise QuotaExceededError(
        f"{check.reason}. Upgrade your plan to keep writing.",
        limit=check.request_limit,
        used=check.requests_used,
        quota="requests",
    )


def record_word_usage(session: Session, user_id: str, words: int) -> UserProfile:
    profile = get_or_create_profile(session, user_id)
    profile.ai_words_used_this_month = max(int(profile.ai_words_used_this_month or 0), 0) + max(int(words), 0)
    profile.updated_at = datetime.now(timezone.utc)
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile
