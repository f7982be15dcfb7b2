from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request

from drawdown_journal.analyzer import DrawdownAnalyzer, build_analyzer
from drawdown_journal.config.app_config import AnalysisSettings, load_app_config
from drawdown_journal.logging_setup import setup_logging
from drawdown_journal.pricing.source import AnalysisCancelled, CancelToken

logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5

app = FastAPI(title="Drawdown Journal")


@lru_cache(maxsize=1)
def _analyzer_cached() -> DrawdownAnalyzer:
    return build_analyzer(load_app_config())


def get_analyzer() -> DrawdownAnalyzer:
    return _analyzer_cached()


def get_analysis_settings() -> AnalysisSettings:
    return load_app_config().analysis


async def _cancel_on_disconnect(request: Request, token: CancelToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected from %s, cancelling analysis", request.url.path)
            token.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@app.get("/api/trades/{trade_id}/drawdown")
async def trade_drawdown_api(
    trade_id: str,
    request: Request,
    debug: bool = False,
    analyzer: DrawdownAnalyzer = Depends(get_analyzer),
    settings: AnalysisSettings = Depends(get_analysis_settings),
) -> dict[str, Any]:
    token = CancelToken(timeout_seconds=settings.timeout_seconds)
    watcher = asyncio.create_task(_cancel_on_disconnect(request, token))
    try:
        result = await asyncio.to_thread(analyzer.compute_drawdown, trade_id, debug or settings.debug, token)
    except asyncio.CancelledError:
        token.cancel()
        raise
    except AnalysisCancelled as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    finally:
        watcher.cancel()
    if result is None:
        raise HTTPException(status_code=404, detail="Trade not found.")
    return result.to_payload()


def main() -> None:
    import uvicorn

    app_config = load_app_config()
    setup_logging(app_config.logging.level, app_config.logging.logs_dir)
    uvicorn.run(
        "drawdown_journal.web.app:app",
        host=app_config.app.host,
        port=app_config.app.port,
        reload=app_config.app.reload,
    )


if __name__ == "__main__":
    main()
