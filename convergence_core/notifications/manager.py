"""
Event-driven notification manager.

Turns subsystem events into notifications through matching rules and
delivers them to channels:
- Glob event patterns per rule with ``{{key}}`` templates
- Priority derived from the event name, filtered by rule minimum
- Deduplication window and global/per-rule rate limits
- Built-in ``console`` (logging) and ``webhook`` (aiohttp) channels
- Pluggable senders for every other channel (telegram, discord, slack, ...)

Implements the notification collaborator contract used by the registry:
``await manager.notify_event(event_name, payload)``.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import re
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Union

import aiohttp

from convergence_core.config.core_config import NotificationConfig
from convergence_core.core.events import EventEmitter

logger = logging.getLogger(__name__)

ChannelSender = Callable[["NotificationMessage"], Awaitable[bool]]

RATE_WINDOW_SECONDS = 60.0


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def level(self) -> int:
        return _PRIORITY_LEVEL[self]


_PRIORITY_LEVEL = {
    NotificationPriority.LOW: 0,
    NotificationPriority.NORMAL: 1,
    NotificationPriority.HIGH: 2,
    NotificationPriority.URGENT: 3,
}

_PRIORITY_PREFIX = {
    NotificationPriority.LOW: "[info]",
    NotificationPriority.NORMAL: "[notice]",
    NotificationPriority.HIGH: "[warning]",
    NotificationPriority.URGENT: "[URGENT]",
}

_CONSOLE_LEVELS = {
    NotificationPriority.LOW: logging.INFO,
    NotificationPriority.NORMAL: logging.INFO,
    NotificationPriority.HIGH: logging.WARNING,
    NotificationPriority.URGENT: logging.ERROR,
}


@dataclass
class NotificationMessage:
    title: str
    body: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    channels: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"notif-{uuid.uuid4().hex[:12]}")
    timestamp: float = field(default_factory=time.time)
    outcome: str = "pending"  # sent | duplicate | rate_limited
    delivered: bool = False
    delivered_at: Optional[float] = None
    delivered_channels: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "priority": self.priority.value,
            "channels": list(self.channels),
            "data": self.data,
            "timestamp": self.timestamp,
            "outcome": self.outcome,
            "delivered": self.delivered,
            "delivered_at": self.delivered_at,
            "delivered_channels": list(self.delivered_channels),
            "error": self.error,
        }


@dataclass
class NotificationRule:
    id: str
    name: str
    event_patterns: List[str]
    channels: List[str]
    min_priority: NotificationPriority = NotificationPriority.LOW
    rate_limit: Optional[int] = None  # per minute
    title_template: Optional[str] = None
    body_template: Optional[str] = None
    enabled: bool = True

    def __post_init__(self):
        self.min_priority = NotificationPriority(self.min_priority)

    def matches(self, event_name: str) -> bool:
        return any(fnmatch.fnmatchcase(event_name, pattern) for pattern in self.event_patterns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "event_patterns": list(self.event_patterns),
            "channels": list(self.channels),
            "min_priority": self.min_priority.value,
            "rate_limit": self.rate_limit,
            "title_template": self.title_template,
            "body_template": self.body_template,
            "enabled": self.enabled,
        }


def default_rules() -> List[NotificationRule]:
    return [
        NotificationRule(
            id="service-down",
            name="Service Down Alerts",
            event_patterns=["service.down", "service.unhealthy"],
            channels=["telegram", "discord", "console"],
            min_priority=NotificationPriority.HIGH,
            title_template="Service Down",
            body_template="Service {{service}} is down. URL: {{url}}",
        ),
        NotificationRule(
            id="service-recovered",
            name="Service Recovered",
            event_patterns=["service.recovered", "service.healed"],
            channels=["telegram", "console"],
            min_priority=NotificationPriority.NORMAL,
            title_template="Service Recovered",
            body_template="Service {{service}} is back online.",
        ),
        NotificationRule(
            id="autonomous-decision",
            name="Autonomous Decision Made",
            event_patterns=["decision.*"],
            channels=["console"],
            min_priority=NotificationPriority.NORMAL,
            title_template="Autonomous Decision",
            body_template="{{type}}: {{reason}}",
        ),
        NotificationRule(
            id="critical-errors",
            name="Critical Errors",
            event_patterns=["error.critical", "error.fatal"],
            channels=["telegram", "discord", "slack", "console"],
            min_priority=NotificationPriority.URGENT,
            rate_limit=5,
            title_template="Critical Error",
            body_template="{{message}}\n\nComponent: {{component}}",
        ),
        NotificationRule(
            id="task-failures",
            name="Task Failures",
            event_patterns=["error.task_*"],
            channels=["console"],
            min_priority=NotificationPriority.NORMAL,
            title_template="Task Failed",
            body_template="Task {{task_id}} ({{task_type}}) failed: {{error}}",
        ),
    ]


_TEMPLATE_KEY = re.compile(r"\{\{(\w+)\}\}")


def interpolate(template: str, data: Dict[str, Any]) -> str:
    """Replace ``{{key}}`` with values from data. Unknown keys stay as-is."""
    def replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in data or data[key] is None:
            return match.group(0)
        value = data[key]
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return str(value)

    return _TEMPLATE_KEY.sub(replace, template)


def event_priority(
    event_name: str,
    default: NotificationPriority = NotificationPriority.LOW,
) -> NotificationPriority:
    name = event_name.lower()
    if "critical" in name or "fatal" in name:
        return NotificationPriority.URGENT
    if "error" in name or "down" in name:
        return NotificationPriority.HIGH
    if "warning" in name or "degraded" in name:
        return NotificationPriority.NORMAL
    return default


class NotificationManager(EventEmitter):
    """
    Rule-driven multi-channel notifier.

    Events: sent, duplicate, rate_limited, delivery_error, rule_added,
    rule_removed, channel_registered
    """

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        rules: Optional[Sequence[NotificationRule]] = None,
    ):
        super().__init__()
        self.config = config or NotificationConfig()
        self._rules: List[NotificationRule] = list(rules) if rules is not None else default_rules()
        self._history: Deque[NotificationMessage] = deque(maxlen=self.config.history_limit)
        self._recent_hashes: Dict[str, float] = {}
        self._rate_buckets: Dict[str, Deque[float]] = {}

        self._senders: Dict[str, ChannelSender] = {
            "console": self._send_console,
            "webhook": self._send_webhook,
        }

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def notify(
        self,
        title: str,
        body: str,
        priority: Union[NotificationPriority, str] = NotificationPriority.NORMAL,
        channels: Optional[Sequence[str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> NotificationMessage:
        """Send one notification, unless it is a duplicate or rate limited."""
        message = NotificationMessage(
            title=title,
            body=body,
            priority=NotificationPriority(priority),
            channels=list(channels) if channels else list(self.config.default_channels),
            data=dict(data or {}),
        )

        if self._is_duplicate(message):
            message.outcome = "duplicate"
            self.emit("duplicate", message)
            return message

        if self.config.rate_limit_enabled and not self._take_token(
            "global", self.config.global_rate_limit_per_minute
        ):
            message.outcome = "rate_limited"
            self.emit("rate_limited", message)
            return message

        results = await asyncio.gather(
            *(self._deliver(message, channel) for channel in message.channels)
        )

        message.delivered_channels = [c for c, ok in zip(message.channels, results) if ok]
        message.delivered = any(results)
        message.delivered_at = time.time()
        message.outcome = "sent"

        self._history.append(message)
        self.emit("sent", message)
        return message

    async def notify_event(
        self,
        event_name: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> List[NotificationMessage]:
        """Notify through every enabled rule whose pattern matches the event."""
        data = dict(payload or {})
        sent: List[NotificationMessage] = []

        for rule in list(self._rules):
            if not rule.enabled or not rule.matches(event_name):
                continue

            priority = event_priority(event_name, rule.min_priority)
            if priority.level < rule.min_priority.level:
                continue

            if rule.rate_limit is not None and not self._take_token(
                f"rule:{rule.id}", rule.rate_limit
            ):
                message = NotificationMessage(
                    title=rule.title_template or event_name,
                    body="",
                    priority=priority,
                    channels=list(rule.channels),
                    outcome="rate_limited",
                )
                self.emit("rate_limited", message)
                continue

            title = interpolate(rule.title_template or event_name, data)
            body = interpolate(rule.body_template or json.dumps(data, default=str), data)
            message = await self.notify(
                title,
                body,
                priority=priority,
                channels=rule.channels,
                data={"event_name": event_name, "rule_id": rule.id, **data},
            )
            sent.append(message)

        return sent

    # Alias matching the host-side naming of the contract
    trigger_event = notify_event

    def add_rule(self, rule: NotificationRule) -> None:
        self._rules.append(rule)
        self.emit("rule_added", rule)

    def remove_rule(self, rule_id: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.id != rule_id]
        removed = len(self._rules) != before
        if removed:
            self.emit("rule_removed", rule_id)
        return removed

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> bool:
        for rule in self._rules:
            if rule.id == rule_id:
                rule.enabled = enabled
                return True
        return False

    def get_rules(self) -> List[NotificationRule]:
        return list(self._rules)

    def get_history(self, limit: int = 100) -> List[NotificationMessage]:
        return list(self._history)[-limit:] if limit > 0 else []

    def register_channel(self, channel: str, sender: ChannelSender) -> None:
        """Register a sender coroutine for a channel name."""
        self._senders[channel] = sender
        self.emit("channel_registered", channel)

    def channels(self) -> List[str]:
        return sorted(self._senders)

    # =========================================================================
    # DELIVERY
    # =========================================================================

    async def _deliver(self, message: NotificationMessage, channel: str) -> bool:
        sender = self._senders.get(channel)
        if sender is None:
            logger.debug(f"[Notifications] No sender for channel '{channel}'")
            return False

        try:
            return bool(await sender(message))
        except Exception as e:
            message.error = str(e)
            logger.warning(f"[Notifications] Delivery to {channel} failed: {e}")
            self.emit("delivery_error", {"message": message, "channel": channel, "error": str(e)})
            return False

    async def _send_console(self, message: NotificationMessage) -> bool:
        prefix = _PRIORITY_PREFIX[message.priority]
        logger.log(
            _CONSOLE_LEVELS[message.priority],
            f"[Notifications] {prefix} {message.title}\n{message.body}",
        )
        return True

    async def _send_webhook(self, message: NotificationMessage) -> bool:
        url = self.config.webhook_url
        if not url:
            return False

        headers = {"Content-Type": "application/json", **self.config.webhook_headers}
        body = {
            "id": message.id,
            "title": message.title,
            "body": message.body,
            "priority": message.priority.value,
            "data": message.data,
            "timestamp": message.timestamp,
        }

        timeout = aiohttp.ClientTimeout(total=self.config.webhook_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                url, data=json.dumps(body, default=str), headers=headers
            ) as response:
                return 200 <= response.status < 300

    # =========================================================================
    # DEDUPLICATION & RATE LIMITING
    # =========================================================================

    def _is_duplicate(self, message: NotificationMessage) -> bool:
        now = time.time()
        expired = [h for h, expires in self._recent_hashes.items() if expires <= now]
        for digest in expired:
            del self._recent_hashes[digest]

        digest = f"{message.title}:{message.body}:{message.priority.value}"
        if digest in self._recent_hashes:
            return True

        self._recent_hashes[digest] = now + self.config.deduplication_window
        return False

    def _take_token(self, key: str, per_minute: int) -> bool:
        now = time.time()
        bucket = self._rate_buckets.setdefault(key, deque())
        while bucket and bucket[0] <= now - RATE_WINDOW_SECONDS:
            bucket.popleft()

        if len(bucket) >= per_minute:
            return False

        bucket.append(now)
        return True


__all__ = [
    "NotificationPriority",
    "NotificationMessage",
    "NotificationRule",
    "NotificationManager",
    "default_rules",
    "interpolate",
    "event_priority",
]
