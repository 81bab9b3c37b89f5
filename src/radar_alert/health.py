"""
Health - Observability & Heartbeat
=============================================
Description: Writes structured heartbeat JSON after every poll outcome for
             external monitoring, and answers staleness checks for the
             server's /health endpoint (unhealthy once no poll has completed
             within the allowed age).
Author: Radar Alert Team
Version: 1.1.0
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from .config import HEARTBEAT_FILE

log = logging.getLogger('radar_alert.health')

HEARTBEAT_VERSION = '1.1.0'


def write_heartbeat(
    state: str,
    active: bool,
    polls: int,
    region: Optional[str] = None,
    event: Optional[str] = None,
    cache: Optional[Dict[str, int]] = None,
    error: Optional[str] = None,
    path: Path = HEARTBEAT_FILE,
) -> bool:
    """Write structured heartbeat JSON for external monitoring."""
    try:
        hb = {
            'ts': datetime.now(timezone.utc).isoformat(),
            'state': state,
            'active': active,
            'region': region,
            'event': event,
            'polls': polls,
            'cache': cache or {},
            'error': error,
            'v': HEARTBEAT_VERSION,
        }
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(hb, f, indent=2)
        return True
    except Exception as e:
        log.error(f"Heartbeat failed: {e}")
        return False


def check_health(path: Path = HEARTBEAT_FILE, max_age: float = 600) -> Dict:
    """Health from the last heartbeat (unhealthy if older than max_age seconds)."""
    path = Path(path)
    if not path.exists():
        return {'healthy': False, 'reason': 'No heartbeat'}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            hb = json.load(f)

        age = (datetime.now(timezone.utc) - datetime.fromisoformat(hb['ts'])).total_seconds()
        healthy = age < max_age

        return {
            'healthy': healthy,
            'reason': None if healthy else f'Stale ({age:.0f}s)',
            'state': hb.get('state'),
            'active': hb.get('active'),
            'polls': hb.get('polls'),
        }
    except Exception as e:
        return {'healthy': False, 'reason': str(e)}
