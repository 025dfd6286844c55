"""Run one notification pass from the command line.

    python scripts/run_notification_pass.py           # due users only
    python scripts/run_notification_pass.py --force   # everyone, like the admin endpoint
"""
import argparse
import sys
sys.path.insert(0, "/app")

from app.database import SessionLocal
from app.logging_config import setup_logging
from app.services.notification_service import NotificationService
from app.services.push_service import validate_push_settings


def run_pass(force: bool = False):
    """Evaluate eligible users once and print the pass summary."""
    setup_logging()
    validate_push_settings()

    db = SessionLocal()
    try:
        summary = NotificationService(db).process_notifications(force=force)
        print(f"Users considered: {summary.users_considered}")
        print(f"  Evaluated: {summary.users_evaluated}")
        print(f"  Seeded:    {summary.users_seeded}")
        print(f"  Events:    {summary.events_logged}")
        print(f"  Failures:  {summary.user_failures} users, {summary.rule_failures} rules")
        print("Pass complete!")
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--force", action="store_true", help="ignore next_notification_at")
    args = parser.parse_args()
    run_pass(force=args.force)
