import logging, subprocess, sys, threading
from pathlib import Path

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _reap(proc: subprocess.Popen) -> None:
    code = proc.wait()
    logger.info("[TRIGGER] Ingestion pid %d exited with code %s", proc.pid, code)


def launch_ingest() -> int:
    """Start the ingestion job detached from the request. Returns its pid."""
    proc = subprocess.Popen(
        [sys.executable, "-m", "spring_ingest"],
        cwd=PROJECT_ROOT,
        stdin=subprocess.DEVNULL,
        start_new_session=True,
    )
    # The waiter reaps the child so finished jobs do not linger as zombies.
    threading.Thread(target=_reap, args=(proc,), name=f"ingest-{proc.pid}", daemon=True).start()
    logger.info("[TRIGGER] Ingestion started as pid %d", proc.pid)
    return proc.pid
