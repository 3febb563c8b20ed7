from typing import Optional

from llmusage._logging import get_logger
from llmusage.clients.base import BaseUsageClient, require_token
from llmusage.models import (
    Account,
    PercentFormat,
    Service,
    Token,
    UsageData,
    UsageMetric,
    UsagePeriod,
    utcnow,
)
from llmusage.normalize import (
    FIVE_HOURS_MS,
    SEVEN_DAYS_MS,
    after_seconds,
    as_float,
    parse_iso8601,
)

logger = get_logger("LLMUsage.Claude")

USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
REFRESH_URL = "https://platform.claude.com/v1/oauth/token"
CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
SCOPES = "user:profile user:inference user:sessions:claude_code user:mcp_servers"

# (response key, metric label, period label, period length)
WINDOWS = (
    ("five_hour", "Session", "5 hours", FIVE_HOURS_MS),
    ("seven_day", "Weekly", "7 days", SEVEN_DAYS_MS),
    ("seven_day_sonnet", "Sonnet", "7 days", SEVEN_DAYS_MS),
)


def parse_usage(data: dict, account: Account) -> UsageData:
    metrics = []
    for key, label, period_label, duration_ms in WINDOWS:
        window = data.get(key)
        if not isinstance(window, dict):
            continue
        utilization = as_float(window.get("utilization"))
        if utilization is None:
            continue
        metrics.append(
            UsageMetric(
                label=label,
                used_percent=utilization,
                format=PercentFormat(),
                period=UsagePeriod(
                    period_label, parse_iso8601(window.get("resets_at")), duration_ms
                ),
            )
        )
    return UsageData(
        account=account, metrics=metrics, settings_url=ClaudeClient.settings_url
    )


class ClaudeClient(BaseUsageClient):
    """Anthropic OAuth usage endpoint used by Claude Code."""

    service = Service.CLAUDE
    settings_url = "https://claude.ai/settings/usage"

    async def fetch_usage(self, account: Account) -> UsageData:
        token = require_token(account)
        data = await self._request_json(
            "GET",
            USAGE_URL,
            headers={
                "Authorization": f"Bearer {token.access_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "anthropic-beta": "oauth-2025-04-20",
                "User-Agent": "LLMUsage",
            },
        )
        return parse_usage(data, account)

    async def refresh_token(self, token: Token) -> Optional[Token]:
        if not token.refresh_token:
            return None

        resp = await self._request(
            "POST",
            REFRESH_URL,
            headers={"Content-Type": "application/json"},
            json={
                "grant_type": "refresh_token",
                "refresh_token": token.refresh_token,
                "client_id": CLIENT_ID,
                "scope": SCOPES,
            },
        )
        if not resp.is_success:
            logger.info(f"Token refresh rejected with HTTP {resp.status_code}")
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not isinstance(access_token, str) or not access_token:
            return None

        expires_at = after_seconds(utcnow(), as_float(data.get("expires_in")))
        return Token(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or token.refresh_token,
            expires_at=expires_at,
            source=token.source,
        )
