"""Shared data model: services, tokens, accounts and normalized usage."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union
from uuid import UUID, uuid4

DEFAULT_LABEL = "Default"

# Tokens are treated as due for refresh this long before they expire.
REFRESH_BUFFER = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Service(str, Enum):
    """The AI-coding services whose usage can be tracked."""

    CLAUDE = "claude"
    COPILOT = "copilot"
    CURSOR = "cursor"
    WINDSURF = "windsurf"
    ANTIGRAVITY = "antigravity"
    CODEX = "codex"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, name: str) -> Service:
        """Look up a service by its machine name, case-insensitively."""
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown service: '{name}'. "
                f"Available: {', '.join(s.value for s in cls)}"
            ) from None


_DISPLAY_NAMES = {
    Service.CLAUDE: "Claude",
    Service.COPILOT: "GitHub Copilot",
    Service.CURSOR: "Cursor",
    Service.WINDSURF: "Windsurf",
    Service.ANTIGRAVITY: "Antigravity",
    Service.CODEX: "Codex",
}


class TokenSource(str, Enum):
    DISCOVERED = "discovered"  # read from an installed app's credentials
    MANUAL = "manual"          # entered by the user
    OAUTH = "oauth"            # obtained through an OAuth flow


@dataclass(frozen=True)
class Token:
    """One access credential plus optional refresh material and expiry."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    source: TokenSource = TokenSource.DISCOVERED

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("access_token must not be empty")

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return utcnow() >= self.expires_at

    @property
    def needs_refresh(self) -> bool:
        if self.expires_at is None:
            return False
        return utcnow() + REFRESH_BUFFER >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": _dt_to_str(self.expires_at),
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Token:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=_dt_from_str(data.get("expires_at")),
            source=TokenSource(data.get("source", TokenSource.DISCOVERED.value)),
        )


@dataclass
class Account:
    """A labeled credential bundle for one service.

    ``tokens`` is ordered by preference: the first non-expired entry is the
    one usage clients use.
    """

    service: Service
    label: str = DEFAULT_LABEL
    tokens: list[Token] = field(default_factory=list)
    is_active: bool = True
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def primary_token(self) -> Optional[Token]:
        return next((t for t in self.tokens if not t.is_expired), None)

    def upsert_token(self, token: Token) -> None:
        """Replace the token with the same access token in place, or append."""
        for idx, existing in enumerate(self.tokens):
            if existing.access_token == token.access_token:
                self.tokens[idx] = token
                break
        else:
            self.tokens.append(token)
        self.touch()

    def touch(self) -> None:
        self.updated_at = utcnow()

    def copy(self) -> Account:
        """Snapshot safe to hand out; tokens are immutable so a list copy suffices."""
        return replace(self, tokens=list(self.tokens))

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "service": self.service.value,
            "label": self.label,
            "tokens": [t.to_dict() for t in self.tokens],
            "is_active": self.is_active,
            "created_at": _dt_to_str(self.created_at),
            "updated_at": _dt_to_str(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Account:
        now = utcnow()
        return cls(
            id=UUID(data["id"]) if data.get("id") else uuid4(),
            service=Service(data["service"]),
            label=data.get("label", DEFAULT_LABEL),
            tokens=[Token.from_dict(t) for t in data.get("tokens", [])],
            is_active=data.get("is_active", True),
            created_at=_dt_from_str(data.get("created_at")) or now,
            updated_at=_dt_from_str(data.get("updated_at")) or now,
        )


@dataclass(frozen=True)
class DiscoveryResult:
    """Credentials found for one service, tagged with how they were found."""

    service: Service
    tokens: list[Token]
    source: str  # "file", "keychain", "sqlite", "process", ...
    label: Optional[str] = None


# ---------------------------------------------------------------------------
# Normalized usage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UsagePeriod:
    label: str  # "5 hours", "7 days", "Monthly", ...
    resets_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "resets_at": _dt_to_str(self.resets_at),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class PercentFormat:
    kind = "percent"

    def to_dict(self) -> dict:
        return {"kind": self.kind}


@dataclass(frozen=True)
class DollarsFormat:
    used: float
    limit: float
    kind = "dollars"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "used": self.used, "limit": self.limit}


@dataclass(frozen=True)
class CountFormat:
    used: int
    limit: int
    suffix: str
    kind = "count"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "used": self.used,
            "limit": self.limit,
            "suffix": self.suffix,
        }


UsageFormat = Union[PercentFormat, DollarsFormat, CountFormat]


def clamp_percent(value: float) -> float:
    return min(100.0, max(0.0, float(value)))


@dataclass(frozen=True)
class UsageMetric:
    """One usage line item; ``used_percent`` is always clamped to [0, 100]."""

    label: str
    used_percent: float
    format: UsageFormat = field(default_factory=PercentFormat)
    period: Optional[UsagePeriod] = None

    def __post_init__(self):
        object.__setattr__(self, "used_percent", clamp_percent(self.used_percent))

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "used_percent": self.used_percent,
            "format": self.format.to_dict(),
            "period": self.period.to_dict() if self.period else None,
        }


@dataclass(frozen=True)
class PlanInfo:
    name: Optional[str] = None
    tier: Optional[str] = None

    def to_dict(self) -> dict:
        return {"name": self.name, "tier": self.tier}


@dataclass(frozen=True)
class UsageData:
    """Normalized usage for one account at one point in time."""

    account: Account
    metrics: list[UsageMetric] = field(default_factory=list)
    plan: Optional[PlanInfo] = None
    settings_url: Optional[str] = None
    fetched_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "account": {
                "id": str(self.account.id),
                "service": self.account.service.value,
                "label": self.account.label,
            },
            "plan": self.plan.to_dict() if self.plan else None,
            "metrics": [m.to_dict() for m in self.metrics],
            "settings_url": self.settings_url,
            "fetched_at": _dt_to_str(self.fetched_at),
        }
