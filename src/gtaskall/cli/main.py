# src/gtaskall/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the event loop thread with the
sync engine on it, then runs the console REPL in the main thread.
"""

from __future__ import annotations

import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..sync.runner import BackgroundLoop

logger = logging.getLogger(__name__)


async def _start_engine(state: AppState) -> None:
    state.engine.start()


async def _stop_services(state: AppState) -> None:
    await state.engine.stop(timeout=10.0)
    await state.client.aclose()  # type: ignore[attr-defined]
    if state.oauth is not None:
        await state.oauth.aclose()


def _shutdown(state: AppState, runner: BackgroundLoop) -> None:
    """Best-effort shutdown: stop syncing, close HTTP clients, flush the cache."""
    try:
        runner.run(_stop_services(state), timeout=15.0)
    except Exception:
        logger.exception("Failed to stop services cleanly.")

    runner.stop()
    runner.join(timeout=10.0)
    if state.cache is not None:
        state.cache.flush()


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("google_auth_oauthlib").setLevel(logging.WARNING)

    logger.info("Starting %s...", settings.app_name)

    runner = BackgroundLoop()
    state = create_initial_state(settings=settings, runner=runner)
    runner.start()
    runner.run(_start_engine(state))

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        raise KeyboardInterrupt

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Not available on every platform / outside the main thread.
        logger.debug("SIGTERM handler not installed.", exc_info=True)

    try:
        run_console_loop(state)
    finally:
        _shutdown(state, runner)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
