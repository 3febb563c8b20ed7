from typing import Optional

from llmusage._logging import get_logger
from llmusage.clients.base import BaseUsageClient, require_token
from llmusage.errors import InvalidResponseError, UsageClientError
from llmusage.models import (
    Account,
    DollarsFormat,
    PlanInfo,
    Service,
    UsageData,
    UsageMetric,
    UsagePeriod,
)
from llmusage.normalize import THIRTY_DAYS_MS, as_float, from_epoch_millis

logger = get_logger("LLMUsage.Cursor")

BASE_URL = "https://api2.cursor.sh"
USAGE_URL = f"{BASE_URL}/aiserver.v1.DashboardService/GetCurrentPeriodUsage"
PLAN_URL = f"{BASE_URL}/aiserver.v1.DashboardService/GetPlanInfo"


def check_enabled(data: dict) -> dict:
    """Return ``planUsage``; usage-based accounts without it are invalid."""
    plan_usage = data.get("planUsage")
    if data.get("enabled") is not True or not isinstance(plan_usage, dict):
        raise InvalidResponseError("Cursor usage is not enabled for this account")
    return plan_usage


def parse_usage(
    data: dict, account: Account, plan: Optional[PlanInfo] = None
) -> UsageData:
    plan_usage = check_enabled(data)

    resets_at = from_epoch_millis(data.get("billingCycleEnd"))
    starts_at = from_epoch_millis(data.get("billingCycleStart"))
    duration_ms = THIRTY_DAYS_MS
    if starts_at and resets_at and resets_at > starts_at:
        duration_ms = int((resets_at - starts_at).total_seconds() * 1000)

    metrics = []
    limit = as_float(plan_usage.get("limit"))
    if limit and limit > 0:
        used = as_float(plan_usage.get("totalSpend"))
        if used is None:
            used = limit - (as_float(plan_usage.get("remaining")) or 0.0)
        metrics.append(
            UsageMetric(
                label="Plan usage",
                used_percent=used / limit * 100,
                format=DollarsFormat(used=used, limit=limit),
                period=UsagePeriod("Billing cycle", resets_at, duration_ms),
            )
        )
    return UsageData(account=account, metrics=metrics, plan=plan)


class CursorClient(BaseUsageClient):
    """Cursor dashboard API over the Connect JSON protocol."""

    service = Service.CURSOR

    async def _connect_post(self, url: str, access_token: str) -> dict:
        return await self._request_json(
            "POST",
            url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "Connect-Protocol-Version": "1",
            },
            content=b"{}",
        )

    async def _plan_info(self, access_token: str) -> Optional[PlanInfo]:
        try:
            data = await self._connect_post(PLAN_URL, access_token)
        except UsageClientError as exc:
            logger.debug(f"Plan info unavailable: {exc}")
            return None
        info = data.get("planInfo")
        name = info.get("planName") if isinstance(info, dict) else None
        return PlanInfo(name=name) if isinstance(name, str) else None

    async def fetch_usage(self, account: Account) -> UsageData:
        token = require_token(account)
        data = await self._connect_post(USAGE_URL, token.access_token)
        check_enabled(data)
        plan = await self._plan_info(token.access_token)
        return parse_usage(data, account, plan)
