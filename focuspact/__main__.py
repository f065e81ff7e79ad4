"""Run the FocusPact background worker: python -m focuspact.

The worker owns the Qt event loop.  It drains its own deferred task
queue, but that queue is in-process: a host that records sessions must
drain the tasks it enqueues.  The periodic sweep covers the rest by
reconciling every open pact and re-evaluating challenges for every user
with recent focus sessions.
"""

import logging
import signal
import sys

from PyQt6.QtCore import QCoreApplication, QTimer

from .database.db import init_db
from .gamification.challenges import EVALUATOR
from .pacts.engine import ENGINE
from .settings import get_settings
from .tasks import TASKS

logger = logging.getLogger("focuspact")


def _log_transition(data: dict) -> None:
    logger.info(
        "pact %s is now %s (badges: %s)",
        data["pact_id"], data["new_status"], data["badges_awarded"],
    )


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()

    app = QCoreApplication(sys.argv)
    app.setApplicationName("FocusPact")
    app.setOrganizationName("FocusPact")

    ENGINE.pact_status_changed.connect(_log_transition)
    TASKS.start(settings.task_poll_interval_ms)

    sweep_timer = QTimer()
    sweep_timer.timeout.connect(ENGINE.sweep)
    sweep_timer.timeout.connect(EVALUATOR.sweep)
    sweep_timer.start(settings.sweep_interval_seconds * 1000)
    # First pass right after startup to catch up on anything missed.
    QTimer.singleShot(0, ENGINE.sweep)
    QTimer.singleShot(0, EVALUATOR.sweep)

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    logger.info(
        "FocusPact worker ready (sweep every %ss, tz=%s)",
        settings.sweep_interval_seconds, settings.timezone,
    )
    code = app.exec()
    TASKS.stop()
    sys.exit(code)


if __name__ == "__main__":
    main()
