# =============================================
# File: storefront/results.py
# Purpose: Discriminated ranker results (Ok | Empty | Failed) used server and client side
# =============================================
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Union


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    UPSTREAM = "upstream"
    RATE_LIMITED = "rate_limited"

    @classmethod
    def from_status(cls, status: int) -> "ErrorKind":
        """Map an HTTP status to the taxonomy. Anything unknown counts as upstream."""
        if status in (401, 403):
            return cls.AUTHENTICATION
        if status == 429:
            return cls.RATE_LIMITED
        if 400 <= status < 500:
            return cls.VALIDATION
        return cls.UPSTREAM


@dataclass(frozen=True)
class Ok:
    items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Empty:
    """Nothing personalized to offer. Not an error: callers fall back."""
    reason: str = "no_signal"


@dataclass(frozen=True)
class Failed:
    kind: ErrorKind
    message: str = ""

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.UPSTREAM, ErrorKind.RATE_LIMITED)


RankResult = Union[Ok, Empty, Failed]
