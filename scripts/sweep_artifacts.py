#!/usr/bin/env python3
"""
CLI utility to purge expired artifacts from the local artifact directory.

Runs a single janitor sweep and prints the report as JSON.

Usage:
    python scripts/sweep_artifacts.py --artifact-dir tmp/artifacts
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from headshot_core.artifacts.store import LocalArtifactStore
from headshot_core.config import settings
from headshot_core.jobs.store import InMemoryJobStore
from headshot_core.logging import setup_logging
from headshot_core.scheduling.janitor import JanitorSweeper


async def sweep(artifact_dir: str) -> dict:
    janitor = JanitorSweeper(
        InMemoryJobStore(),
        LocalArtifactStore(artifact_dir),
        record_grace=settings.JOB_RECORD_GRACE_SECONDS,
    )
    report = await janitor.sweep()
    return report.model_dump(mode="json")


def main():
    parser = argparse.ArgumentParser(description="Purge expired headshot artifacts")
    parser.add_argument(
        "--artifact-dir",
        default=settings.ARTIFACT_DIR,
        help="Artifact directory (defaults to settings.ARTIFACT_DIR)",
    )
    args = parser.parse_args()

    setup_logging(settings.LOG_LEVEL)
    result = asyncio.run(sweep(args.artifact_dir))
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
