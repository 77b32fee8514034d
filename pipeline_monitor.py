# ABOUTME: Monitoring state for research sessions and external provider calls.
# ABOUTME: Subscribes to orchestrator events and gateway call records to feed the status endpoint.

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import internal_configs as cfg
from call_gateway import GatewayCallRecord

logger = logging.getLogger(__name__)

MAX_RECENT_ENTRIES = 50
FINISHED_PHASES = ("Complete", "Aborted")


@dataclass
class TokenUsage:
    promptTokens: int = 0
    completionTokens: int = 0
    totalTokens: int = 0

    def add(self, usage: Dict[str, int]):
        prompt = int(usage.get("prompt_tokens", 0) or 0)
        completion = int(usage.get("completion_tokens", 0) or 0)
        self.promptTokens += prompt
        self.completionTokens += completion
        self.totalTokens += int(usage.get("total_tokens", 0) or prompt + completion)

    def to_dict(self) -> Dict[str, int]:
        return {
            "promptTokens": self.promptTokens,
            "completionTokens": self.completionTokens,
            "totalTokens": self.totalTokens
        }


class MonitoringState:
    """In-memory view of session progress and provider activity"""

    def __init__(self, maxFinishedSessions: int = cfg.config.MAX_RETAINED_SESSIONS):
        self.maxFinishedSessions = maxFinishedSessions
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.providers: Dict[str, Dict[str, Any]] = {}
        self.events: List[Dict[str, Any]] = []
        self.providerCalls: List[Dict[str, Any]] = []
        self.usage = TokenUsage()
        self.startTime: str = datetime.now().isoformat()

    def reset(self):
        self.__init__(self.maxFinishedSessions)

    def _pruneFinishedSessions(self):
        finished = sorted(
            (sid for sid, entry in self.sessions.items() if entry.get("phase") in FINISHED_PHASES),
            key=lambda sid: self.sessions[sid]["updatedAt"]
        )
        for sessionId in finished[:max(0, len(finished) - self.maxFinishedSessions)]:
            del self.sessions[sessionId]

    def onPipelineEvent(self, event) -> None:
        """Listener for PipelineOrchestrator.addListener."""
        entry = self.sessions.setdefault(event.sessionId, {"sessionId": event.sessionId, "rounds": 0})
        entry["phase"] = event.phase
        entry["progress"] = event.progress
        entry["updatedAt"] = event.timestamp
        if event.kind == "round":
            entry["rounds"] += 1
        if event.phase in FINISHED_PHASES:
            self._pruneFinishedSessions()
        self.events.append({
            "sessionId": event.sessionId,
            "kind": event.kind,
            "phase": event.phase,
            "progress": event.progress,
            "detail": event.detail,
            "timestamp": event.timestamp
        })
        del self.events[:-MAX_RECENT_ENTRIES]

    def onGatewayCall(self, record: GatewayCallRecord) -> None:
        """Listener for ExternalCallGateway.addListener."""
        stats = self.providers.setdefault(record.provider, {
            "provider": record.provider,
            "attempts": 0,
            "successes": 0,
            "failures": {},
            "usage": TokenUsage()
        })
        stats["attempts"] += 1
        if record.outcome == "success":
            stats["successes"] += 1
            stats["usage"].add(record.usage)
            self.usage.add(record.usage)
        else:
            stats["failures"][record.failureKind] = stats["failures"].get(record.failureKind, 0) + 1

        self.providerCalls.append({
            "provider": record.provider,
            "attempt": record.attempt,
            "outcome": record.outcome,
            "failureKind": record.failureKind,
            "durationMs": record.durationMs,
            "timestamp": datetime.now().isoformat()
        })
        del self.providerCalls[:-MAX_RECENT_ENTRIES]

    @property
    def totalTokens(self) -> int:
        return self.usage.totalTokens

    def sessionSummary(self, sessionId: str) -> Optional[Dict[str, Any]]:
        return self.sessions.get(sessionId)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessions": list(self.sessions.values()),
            "providers": [
                {**stats, "usage": stats["usage"].to_dict()} for stats in self.providers.values()
            ],
            "recentEvents": self.events[-MAX_RECENT_ENTRIES:],
            "recentProviderCalls": self.providerCalls[-MAX_RECENT_ENTRIES:],
            "usage": self.usage.to_dict(),
            "startTime": self.startTime
        }


# Global singleton for monitoring state
state = MonitoringState()
