"""
Roll forward due plan changes and lapsed cancellations.

Reads apply the same rollover lazily, so this sweep is optional; run it from
cron to keep stored records current for reporting. Use --dry-run to only
count what is due.
"""
from __future__ import annotations

import argparse
from typing import Dict, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from tutorgate.core.clock import Clock, utc_now
from tutorgate.core.config import settings
from tutorgate.core.database import get_session_factory, init_engine
from tutorgate.core.logging import configure_logging, log_event
from tutorgate.features.subscriptions.lifecycle import SubscriptionLifecycleManager
from tutorgate.features.subscriptions.store import SubscriptionStore


def run_sweep(
    *,
    dry_run: bool,
    session_factory: Optional[sessionmaker] = None,
    now_fn: Clock = utc_now,
) -> Dict:
    store = SubscriptionStore(session_factory, now_fn=now_fn)
    now = now_fn()
    report = {
        "due_scheduled_changes": len(store.list_due_scheduled_changes(now)),
        "lapsed_cancellations": len(store.list_lapsed_cancellations(now)),
        "rolled_over": 0,
        "dry_run": dry_run,
    }
    if not dry_run:
        report["rolled_over"] = SubscriptionLifecycleManager(store, now_fn=now_fn).apply_scheduled_changes()
    log_event("info", "sweep.complete", event_type="plan_change_sweep", extra=report)
    return report


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Apply due scheduled plan changes and expire lapsed cancellations.")
    parser.add_argument("--dry-run", action="store_true", help="Count due records without writing.")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    init_engine(args.database_url)
    report = run_sweep(dry_run=args.dry_run, session_factory=get_session_factory())
    print(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
