"""
Server - FastAPI Web Server
=============================================
Description: Hosts the alert orchestrator on the server's event loop and
             serves the live overlay panel. Also exposes the host-side proxy
             endpoint, the user dismissal hook and a synthetic test alert.
Author: Radar Alert Team
Version: 1.0.0

Endpoints:
    GET  /            - Current overlay panel HTML
    POST /dismiss     - Tap-to-dismiss
    POST /test-alert  - Show a synthetic alert
    POST /proxy/fetch - Proxy protocol: {id, url, ttl} -> {id, result}
    GET  /health      - Health check for container orchestration
    GET  /status      - Detailed status with heartbeat data

Usage:
    RADAR_ALERT_CONFIG=radar.json python -m uvicorn radar_alert.server:app
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, Response
from fastapi.responses import HTMLResponse

from .config import HEARTBEAT_FILE, load_config
from .display import DisplayOrchestrator
from .health import check_health, write_heartbeat
from .proxy import ProxyHelper

# Configure logging
logging.basicConfig(
    format='%(asctime)s | %(levelname)-5s | %(name)s | %(message)s',
    datefmt='%Y-%m-%dT%H:%M:%SZ',
    level=logging.INFO
)
logging.Formatter.converter = time.gmtime
log = logging.getLogger('radar_alert.server')

app = FastAPI(
    title="Radar Alert",
    description="Severe weather radar overlay",
    version="1.0.0"
)

_orchestrator: Optional[DisplayOrchestrator] = None
_proxy: Optional[ProxyHelper] = None
_dismissals: List[Dict[str, Any]] = []


def _record_dismiss(kind: str, payload: Dict):
    _dismissals.append({'type': kind, 'payload': payload, 'ts': time.time()})


def get_proxy() -> ProxyHelper:
    global _proxy
    if _proxy is None:
        _proxy = ProxyHelper()
    return _proxy


@app.on_event("startup")
async def startup_event():
    """Build the orchestrator from RADAR_ALERT_CONFIG and start polling."""
    global _orchestrator
    if _orchestrator is not None:
        return

    path = os.environ.get('RADAR_ALERT_CONFIG')
    try:
        config = load_config(Path(path) if path else None)
        _orchestrator = DisplayOrchestrator(config, on_dismiss=_record_dismiss)
        _orchestrator.start()
    except Exception as e:
        log.error(f"Startup failed: {e}", exc_info=True)
        write_heartbeat('failed', False, 0, error=str(e)[:200])
        return
    log.info("Server ready")


@app.on_event("shutdown")
async def shutdown_event():
    global _orchestrator
    log.info("Shutting down orchestrator...")
    if _orchestrator is not None:
        await _orchestrator.close()
        _orchestrator = None
    if _proxy is not None:
        await _proxy.close()


@app.get("/", response_class=HTMLResponse)
async def serve_overlay():
    """Serve the current overlay panel."""
    if _orchestrator is None:
        return HTMLResponse(
            content="""
            <!DOCTYPE html>
            <html>
            <head><title>Radar Alert - Loading</title></head>
            <body style="background:#1a1a2e;color:white;font-family:sans-serif;">
                <p>Initializing alert monitor...</p>
            </body>
            </html>
            """,
            status_code=200
        )
    return HTMLResponse(content=_orchestrator.panel.to_html())


@app.post("/dismiss")
async def dismiss():
    if _orchestrator is None:
        return Response(content='{"dismissed": false}', media_type="application/json", status_code=503)
    return {"dismissed": _orchestrator.dismiss(), "state": _orchestrator.state.value}


@app.post("/test-alert")
async def test_alert():
    if _orchestrator is None:
        return Response(content='{"triggered": false}', media_type="application/json", status_code=503)
    _orchestrator.trigger_test_alert()
    return {"triggered": True, "region": _orchestrator.region.name if _orchestrator.region else None}


@app.post("/proxy/fetch")
async def proxy_fetch(message: Dict[str, Any] = Body(...)):
    """Serve one proxy request; replies are matched by id on the caller side."""
    return await get_proxy().handle(message)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    health = check_health()
    status_code = 200 if health.get('healthy', False) else 503

    return Response(
        content='{"status": "ok"}' if health.get('healthy') else '{"status": "degraded"}',
        media_type="application/json",
        status_code=status_code
    )


@app.get("/status")
async def detailed_status():
    """Detailed status endpoint with heartbeat data."""
    health = check_health()

    status = {
        "healthy": health.get("healthy", False),
        "reason": health.get("reason"),
        "orchestrator": _orchestrator.status() if _orchestrator is not None else None,
        "dismissals": len(_dismissals),
    }

    if HEARTBEAT_FILE.exists():
        try:
            with open(HEARTBEAT_FILE) as f:
                status["heartbeat"] = json.load(f)
        except (OSError, ValueError) as e:
            log.warning(f"Heartbeat unreadable: {e}")

    return status
