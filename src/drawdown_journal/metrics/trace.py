from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionEvent:
    branch: str
    trade_id: str
    debug: bool
    details: dict[str, Any] = field(default_factory=dict)


TraceSink = Callable[[DecisionEvent], None]


def log_sink(event: DecisionEvent) -> None:
    level = logging.INFO if event.debug else logging.DEBUG
    if not logger.isEnabledFor(level):
        return
    logger.log(
        level,
        "drawdown %s trade=%s %s",
        event.branch,
        event.trade_id,
        json.dumps(event.details, default=str, sort_keys=True),
    )
