from datetime import datetime
from typing import Optional

import httpx

from llmusage.clients.base import BaseUsageClient, parse_json_response, require_token
from llmusage.models import (
    Account,
    CountFormat,
    PercentFormat,
    PlanInfo,
    Service,
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
    from_epoch_seconds,
)

USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"

PRIMARY_HEADER = "x-codex-primary-used-percent"
SECONDARY_HEADER = "x-codex-secondary-used-percent"
CREDITS_HEADER = "x-codex-credits-balance"
CREDITS_LIMIT = 1000

# (header, rate_limit window key, metric label, period label, period length)
WINDOWS = (
    (PRIMARY_HEADER, "primary_window", "Session", "5 hours", FIVE_HOURS_MS),
    (SECONDARY_HEADER, "secondary_window", "Weekly", "7 days", SEVEN_DAYS_MS),
)


def reset_time(data: dict, window: str, now: datetime) -> Optional[datetime]:
    rate_limit = data.get("rate_limit")
    if not isinstance(rate_limit, dict):
        return None
    window_data = rate_limit.get(window)
    if not isinstance(window_data, dict):
        return None
    reset_at = from_epoch_seconds(window_data.get("reset_at"))
    if reset_at is not None:
        return reset_at
    return after_seconds(now, as_float(window_data.get("reset_after_seconds")))


def _window_metric(label, used_percent, resets_at, period_label, duration_ms):
    return UsageMetric(
        label=label,
        used_percent=used_percent,
        format=PercentFormat(),
        period=UsagePeriod(period_label, resets_at, duration_ms),
    )


def parse_usage(data: dict, headers: httpx.Headers, account: Account) -> UsageData:
    """Build metrics from rate-limit headers, falling back to the JSON body."""
    now = utcnow()
    metrics = []

    for header, window, label, period_label, duration_ms in WINDOWS:
        used = as_float(headers.get(header))
        if used is not None:
            metrics.append(
                _window_metric(
                    label, used, reset_time(data, window, now), period_label, duration_ms
                )
            )

    rate_limit = data.get("rate_limit")
    if not metrics and isinstance(rate_limit, dict):
        for _, window, label, period_label, duration_ms in WINDOWS:
            window_data = rate_limit.get(window)
            if not isinstance(window_data, dict):
                continue
            used = as_float(window_data.get("used_percent"))
            if used is not None:
                metrics.append(
                    _window_metric(
                        label, used, reset_time(data, window, now), period_label, duration_ms
                    )
                )

    balance = as_float(headers.get(CREDITS_HEADER))
    if balance is not None:
        used = max(0, min(CREDITS_LIMIT, CREDITS_LIMIT - int(balance)))
        metrics.append(
            UsageMetric(
                label="Credits",
                used_percent=used / CREDITS_LIMIT * 100,
                format=CountFormat(used=used, limit=CREDITS_LIMIT, suffix="credits"),
            )
        )

    plan_type = data.get("plan_type")
    plan = PlanInfo(name=plan_type) if isinstance(plan_type, str) else None
    return UsageData(account=account, metrics=metrics, plan=plan)


class CodexClient(BaseUsageClient):
    service = Service.CODEX

    async def fetch_usage(self, account: Account) -> UsageData:
        token = require_token(account)
        resp = await self._request(
            "GET",
            USAGE_URL,
            headers={
                "Authorization": f"Bearer {token.access_token}",
                "Accept": "application/json",
                "User-Agent": "LLMUsage",
            },
        )
        data = parse_json_response(resp)
        return parse_usage(data, resp.headers, account)
