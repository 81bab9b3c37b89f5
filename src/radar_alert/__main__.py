"""
Main - CLI Entry Point
=============================================
Description: Runs the alert overlay headless: polling, show/hide cycle, audio
             cue and heartbeat. The overlay panel is snapshotted to HTML so
             it can be opened in a browser or served by server.py.
Author: Radar Alert Team
Version: 1.0.0

Modes:
    --serve       Continuous polling loop (default)
    --once        Single poll; show the overlay if an alert is active
    --test-alert  Show a synthetic alert on the first configured region
"""

import argparse
import asyncio
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Optional

from .config import DATA_DIR, HTML_OUT, load_config
from .display import DisplayOrchestrator
from .timers import Interval

# Configure logging to UTC
logging.basicConfig(
    format='%(asctime)s | %(levelname)-5s | %(name)s | %(message)s',
    datefmt='%Y-%m-%dT%H:%M:%SZ',
    level=logging.INFO
)
logging.Formatter.converter = time.gmtime
log = logging.getLogger('radar_alert')

SNAPSHOT_INTERVAL_SEC = 5


def write_snapshot(orchestrator: DisplayOrchestrator, path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(orchestrator.panel.to_html(), encoding='utf-8')
        return True
    except Exception as e:
        log.error(f"Snapshot failed: {e}")
        return False


async def run_once(orchestrator: DisplayOrchestrator, out: Path, test_alert: bool = False) -> int:
    """One poll (or synthetic alert), one show, one snapshot."""
    if test_alert:
        orchestrator.trigger_test_alert()
    else:
        orchestrator.apply_poll_result(await orchestrator.monitor.poll())

    if orchestrator.result.active:
        # Let the spawned show finish before snapshotting
        tasks = list(orchestrator._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info(f"ALERT | {orchestrator.panel.title} | {orchestrator.panel.subtitle}")
    else:
        log.info("No qualifying alert")

    write_snapshot(orchestrator, out)
    await orchestrator.close()
    return 0


async def serve(orchestrator: DisplayOrchestrator, out: Path) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    orchestrator.start()
    snapshots = Interval(SNAPSHOT_INTERVAL_SEC, lambda: write_snapshot(orchestrator, out), name='snapshot').start()
    log.info(f"SERVE MODE | snapshot={out}")

    await stop.wait()
    log.info("Shutdown signal received. Cleaning up...")
    snapshots.cancel()
    await orchestrator.close()
    log.info("Serve loop terminated")
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Radar Alert v1.0.0 - Severe Weather Radar Overlay',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m radar_alert --serve --config radar.json   # Continuous polling
  python -m radar_alert --once                        # Single poll
  python -m radar_alert --test-alert --render out.html
        """
    )
    parser.add_argument('--config', type=str, metavar='FILE', help='JSON config file')
    parser.add_argument('--serve', action='store_true', help='Run continuous loop')
    parser.add_argument('--once', action='store_true', help='Run single poll')
    parser.add_argument('--test-alert', action='store_true', help='Show a synthetic alert')
    parser.add_argument('--render', type=str, metavar='FILE', help=f'Overlay HTML output (default: {HTML_OUT})')

    args = parser.parse_args(argv)

    # Default to --serve
    if not any([args.once, args.serve, args.test_alert]):
        args.serve = True

    DATA_DIR.mkdir(parents=True, exist_ok=True)

    try:
        config = load_config(Path(args.config) if args.config else None)
    except (OSError, ValueError) as e:
        log.error(f"Config load failed: {e}")
        return 1

    out = Path(args.render) if args.render else HTML_OUT

    log.info("=" * 50)
    log.info("RADAR ALERT v1.0.0")
    log.info(f"Regions: {', '.join(r.name for r in config.regions) or 'none'}")
    log.info(f"Radar: {config.radar_provider} | Alerts: {', '.join(config.alert_providers)}")
    log.info("=" * 50)

    async def _run() -> int:
        orchestrator = DisplayOrchestrator(config)
        if args.once or args.test_alert:
            return await run_once(orchestrator, out, test_alert=args.test_alert)
        return await serve(orchestrator, out)

    return asyncio.run(_run())


if __name__ == '__main__':
    sys.exit(main())
