from __future__ import annotations

from typing import Any, Optional, Protocol

from ..core.enums import AlertSeverity


class AlertRepository(Protocol):
    def create(self, *, severity: AlertSeverity, message: str, metadata: Optional[dict[str, Any]] = None) -> int:
        raise NotImplementedError
