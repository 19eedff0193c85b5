"""
Token Filter
=============
Quality filtering and scoring for catalog tokens.

- check_token_quality / apply_filters: drop tokens that can't be candidates
  (missing name/symbol/description, thin liquidity, stale data)
- score_token: 0-100 score used to rank candidates before signal generation

Token age is measured from the catalog's created_at (when we first saw the
mint), not from any on-chain timestamp.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from config.settings import Settings
from utils.logger import get_logger

logger = get_logger(__name__)


def _as_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def token_age_hours(token: dict, now: datetime | None = None) -> float:
    """Hours since the catalog first saw this token. Unknown age counts as brand new."""
    created_at = _as_datetime(token.get("created_at"))
    if created_at is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    return (now - created_at).total_seconds() / 3600


class TokenFilter:
    """
    Applies quality filters to catalog tokens and scores them.

    Usage:
        tf = TokenFilter(settings)
        filtered = tf.apply_filters(tokens)
        score = tf.score_token(token)
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def apply_filters(self, tokens: list[dict], now: datetime | None = None) -> list[dict]:
        """
        Run all quality filters on a list of tokens.
        Returns only tokens that pass all checks.
        """
        now = now or datetime.now(timezone.utc)
        results = []
        for token in tokens:
            issues = self.check_token_quality(token, now)
            if not issues:
                results.append(token)
            else:
                logger.debug("token_filtered_out", mint=token.get("mint"), issues=issues)
        logger.debug("quality_filter_applied", input=len(tokens), output=len(results))
        return results

    def check_token_quality(self, token: dict, now: datetime | None = None) -> list[str]:
        """
        Check a single token for quality issues.
        Returns a list of problems found (empty = passed all checks).
        """
        issues = []

        for field_name in ("name", "symbol", "description"):
            if not token.get(field_name):
                issues.append(f"Missing {field_name}")

        liquidity = token.get("liquidity") or 0
        if liquidity < self.settings.quality_min_liquidity:
            issues.append(f"Low liquidity: {liquidity}")

        now = now or datetime.now(timezone.utc)
        last_updated = _as_datetime(token.get("last_updated"))
        max_age = timedelta(hours=self.settings.quality_max_staleness_hours)
        if last_updated is None or now - last_updated > max_age:
            issues.append("Stale data")

        return issues

    def score_token(self, token: dict, now: datetime | None = None) -> int:
        """
        Score a token from 0-100. Pure: same token and clock, same score.

        Points:
        - Liquidity (up to 30)
        - Market cap (up to 25)
        - Completeness: long description, website, telegram, twitter, image (up to 30)
        - Age in the catalog (up to 10)
        """
        score = 0

        liquidity = token.get("liquidity") or 0
        if liquidity > 10_000:
            score += 30
        elif liquidity > 5_000:
            score += 20
        elif liquidity > 1_000:
            score += 10

        market_cap = token.get("market_cap") or 0
        if market_cap > 100_000:
            score += 25
        elif market_cap > 50_000:
            score += 15
        elif market_cap > 10_000:
            score += 5

        if len(token.get("description") or "") > 50:
            score += 10
        for link in ("website", "telegram", "twitter", "image"):
            if token.get(link):
                score += 5

        age = token_age_hours(token, now)
        if age > 24:
            score += 10
        elif age > 12:
            score += 5

        return min(score, 100)
