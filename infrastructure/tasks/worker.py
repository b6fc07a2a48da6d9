"""Run a checkout worker (optionally with embedded beat) from Python.

Equivalent to ``celery -A infrastructure.tasks worker -Q default,payments.poll,payments.sweep``;
``--beat`` additionally runs the reconcile/expiry schedule in-process, which
is enough for a single-node deployment.
"""
from __future__ import annotations

import sys

from .config.celery import celery_app


def build_argv(argv: list[str]) -> list[str]:
    queues = ",".join(q.name for q in celery_app.conf.task_queues)
    args = ["worker", "--hostname=checkout@%h", f"--queues={queues}", "--loglevel=INFO"]
    if "--beat" in argv:
        args.append("--beat")
    return args


def main() -> None:
    celery_app.worker_main(argv=build_argv(sys.argv[1:]))


if __name__ == "__main__":
    main()
