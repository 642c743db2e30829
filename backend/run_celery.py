#!/usr/bin/env python3
# backend/run_celery.py
"""
Development Celery runner.

    python run_celery.py worker   # bookings + notifications queues
    python run_celery.py beat     # no-show sweep, auto-release, capture retries
"""
import argparse
import os
from pathlib import Path
import subprocess
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

CELERY_APP = "app.tasks.celery_app"
DEFAULT_QUEUES = "bookings,notifications"


def _command(role: str, queues: str) -> list[str]:
    base = [sys.executable, "-m", "celery", "-A", CELERY_APP, role, "--loglevel=info"]
    if role == "beat":
        return base
    # No-show timers are ETA tasks; one prefetch per process keeps them on time
    return base + ["--concurrency=2", "--prefetch-multiplier=1", "-Q", queues]


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a CleanConnect Celery process")
    parser.add_argument("role", choices=["worker", "beat"])
    parser.add_argument("--queues", default=os.getenv("CELERY_QUEUES") or DEFAULT_QUEUES)
    options = parser.parse_args()

    print(f"🚀 Starting Celery {options.role}…")
    if options.role == "worker":
        print(f"📦 Consuming queues: {options.queues}")

    sys.exit(subprocess.run(_command(options.role, options.queues)).returncode)
