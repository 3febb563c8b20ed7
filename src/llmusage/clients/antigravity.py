"""Antigravity usage, read from the local language server over Connect RPC."""

from typing import Optional

import httpx

from llmusage._logging import get_logger
from llmusage.clients.base import BaseUsageClient
from llmusage.discovery.antigravity import split_token
from llmusage.errors import NetworkError, NoTokenError, UnauthorizedError
from llmusage.models import Account, PlanInfo, Service, UsageData
from llmusage.normalize import (
    FIVE_HOURS_MS,
    QuotaEntry,
    as_float,
    metrics_from_quota,
    model_family_sort_key,
    parse_iso8601,
)

logger = get_logger("LLMUsage.Antigravity")

LS_SERVICE = "exa.language_server_pb.LanguageServerService"
STATUS_METHOD = "GetUserStatus"

REQUEST_BODY = {
    "metadata": {
        "ideName": "antigravity",
        "extensionName": "antigravity",
        "ideVersion": "unknown",
        "locale": "en",
    }
}


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def quota_entries(configs: list) -> list[QuotaEntry]:
    entries = []
    for config in configs:
        if not isinstance(config, dict):
            continue
        quota = config.get("quotaInfo")
        label = config.get("label")
        if not isinstance(quota, dict) or not isinstance(label, str):
            continue
        remaining = as_float(quota.get("remainingFraction"))
        if remaining is None:
            continue
        entries.append(QuotaEntry(label, remaining, parse_iso8601(quota.get("resetTime"))))
    return entries


def parse_usage(data: dict, account: Account) -> UsageData:
    """Accepts a ``GetUserStatus`` reply or a bare ``clientModelConfigs`` reply.

    The server reports one quota line per model variant (``Gemini 3 Pro
    (High)``, ``Gemini 3 Pro (Low)``, ...) that all draw on one bucket, so
    variants are collapsed to their worst-case reading.
    """
    plan = None
    configs: list = []

    status = data.get("userStatus")
    if isinstance(status, dict):
        plan_info = _as_dict(_as_dict(status.get("planStatus")).get("planInfo"))
        if isinstance(plan_info.get("planName"), str):
            plan = PlanInfo(name=plan_info["planName"])
        cascade = _as_dict(status.get("cascadeModelConfigData"))
        raw_configs = cascade.get("clientModelConfigs")
        configs = raw_configs if isinstance(raw_configs, list) else []
    elif isinstance(data.get("clientModelConfigs"), list):
        configs = data["clientModelConfigs"]

    metrics = metrics_from_quota(
        quota_entries(configs),
        period_label="5 hours",
        duration_ms=FIVE_HOURS_MS,
        sort_key=model_family_sort_key,
    )
    return UsageData(account=account, metrics=metrics, plan=plan)


class AntigravityClient(BaseUsageClient):
    """Tries every discovered ``port:csrf`` token until one server answers."""

    service = Service.ANTIGRAVITY

    async def _call(self, scheme: str, port: int, csrf: str) -> Optional[dict]:
        url = f"{scheme}://127.0.0.1:{port}/{LS_SERVICE}/{STATUS_METHOD}"
        headers = {
            "Content-Type": "application/json",
            "Connect-Protocol-Version": "1",
            "x-codeium-csrf-token": csrf,
        }
        try:
            # The language server uses a self-signed certificate.
            async with self._client(verify=False) as client:
                resp = await client.post(url, headers=headers, json=REQUEST_BODY)
        except httpx.TransportError as exc:
            logger.debug(f"{scheme} probe of port {port} failed: {exc}")
            return None
        if resp.status_code in (401, 403):
            raise UnauthorizedError("Language server rejected the CSRF token")
        if not resp.is_success:
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def _probe(self, port: int, csrf: str) -> Optional[dict]:
        for scheme in ("http", "https"):
            data = await self._call(scheme, port, csrf)
            if data is not None and data.get("userStatus") is not None:
                return data
        return None

    async def fetch_usage(self, account: Account) -> UsageData:
        attempted = False
        rejected: Optional[UnauthorizedError] = None
        for token in account.tokens:
            parsed = split_token(token.access_token)
            if parsed is None:
                continue
            attempted = True
            port, csrf = parsed
            try:
                data = await self._probe(port, csrf)
            except UnauthorizedError as exc:
                rejected = exc
                continue
            if data is not None:
                return parse_usage(data, account)
        if not attempted:
            raise NoTokenError()
        if rejected is not None:
            raise rejected
        raise NetworkError()
