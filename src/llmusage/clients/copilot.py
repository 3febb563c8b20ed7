from llmusage.clients.base import BaseUsageClient, require_token
from llmusage.models import (
    Account,
    CountFormat,
    PercentFormat,
    PlanInfo,
    Service,
    UsageData,
    UsageMetric,
    UsagePeriod,
)
from llmusage.normalize import THIRTY_DAYS_MS, as_float, as_int, parse_iso8601

USAGE_URL = "https://api.github.com/copilot_internal/user"


def _monthly(resets_at):
    return UsagePeriod("Monthly", resets_at, THIRTY_DAYS_MS)


def parse_usage(data: dict, account: Account) -> UsageData:
    """Handle both the paid (``quota_snapshots``) and free (``limited_user_quotas``) shapes."""
    metrics = []
    reset_date = parse_iso8601(data.get("quota_reset_date"))

    snapshots = data.get("quota_snapshots")
    if isinstance(snapshots, dict):
        for key, label in (("premium_interactions", "Premium"), ("chat", "Chat")):
            snapshot = snapshots.get(key)
            if not isinstance(snapshot, dict):
                continue
            remaining = as_float(snapshot.get("percent_remaining"))
            if remaining is None:
                continue
            metrics.append(
                UsageMetric(
                    label=label,
                    used_percent=100 - remaining,
                    format=PercentFormat(),
                    period=_monthly(reset_date),
                )
            )

    limited = data.get("limited_user_quotas")
    monthly = data.get("monthly_quotas")
    if isinstance(limited, dict) and isinstance(monthly, dict):
        free_reset = parse_iso8601(data.get("limited_user_reset_date"))
        for key, label, suffix in (
            ("chat", "Chat", "messages"),
            ("completions", "Completions", "completions"),
        ):
            remaining = as_int(limited.get(key))
            total = as_int(monthly.get(key))
            if remaining is None or not total or total <= 0:
                continue
            used = total - remaining
            metrics.append(
                UsageMetric(
                    label=label,
                    used_percent=used / total * 100,
                    format=CountFormat(used=used, limit=total, suffix=suffix),
                    period=_monthly(free_reset),
                )
            )

    plan_name = data.get("copilot_plan")
    plan = PlanInfo(name=plan_name) if isinstance(plan_name, str) else None
    return UsageData(
        account=account,
        metrics=metrics,
        plan=plan,
        settings_url=CopilotClient.settings_url,
    )


class CopilotClient(BaseUsageClient):
    service = Service.COPILOT
    settings_url = "https://github.com/settings/copilot/features"

    async def fetch_usage(self, account: Account) -> UsageData:
        token = require_token(account)
        data = await self._request_json(
            "GET",
            USAGE_URL,
            headers={
                "Authorization": f"token {token.access_token}",
                "Accept": "application/json",
                "Editor-Version": "vscode/1.96.2",
                "Editor-Plugin-Version": "copilot-chat/0.26.7",
                "User-Agent": "GitHubCopilotChat/0.26.7",
                "X-Github-Api-Version": "2025-04-01",
            },
        )
        return parse_usage(data, account)
