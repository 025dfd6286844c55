"""
Database migration script to add the notification schedule and event log fields.
Run this inside Docker: docker exec -it liftpulse-backend python scripts/migrate_notifications.py
"""

import sys
sys.path.insert(0, "/app")

from app.database import engine
from sqlalchemy import text


def run_migration():
    """Add columns owned by the notification engine."""

    migrations = [
        # User schedule and delivery fields
        """ALTER TABLE users
           ADD COLUMN IF NOT EXISTS push_token VARCHAR(255);""",

        """ALTER TABLE users
           ADD COLUMN IF NOT EXISTS timezone_offset_minutes INTEGER;""",

        """ALTER TABLE users
           ADD COLUMN IF NOT EXISTS next_notification_at TIMESTAMP;""",

        """ALTER TABLE users
           ADD COLUMN IF NOT EXISTS notification_preferences JSON;""",

        """CREATE INDEX IF NOT EXISTS ix_users_next_notification_at
           ON users (next_notification_at);""",

        # NotificationEvent delivery outcome
        """ALTER TABLE notification_events
           ADD COLUMN IF NOT EXISTS error_message VARCHAR(500);""",

        """ALTER TABLE notification_events
           ADD COLUMN IF NOT EXISTS dismissed_at TIMESTAMP;""",

        """CREATE INDEX IF NOT EXISTS ix_notification_events_user_type_sent
           ON notification_events (user_id, notification_type, sent_at);""",
    ]

    with engine.connect() as conn:
        for sql in migrations:
            try:
                conn.execute(text(sql))
                print(f"✓ Executed: {sql[:60]}...")
            except Exception as e:
                if "already exists" in str(e).lower() or "duplicate" in str(e).lower():
                    print(f"⊘ Already exists, skipping: {sql[:60]}...")
                else:
                    print(f"✗ Error: {e}")

        conn.commit()

    print("\n✓ Migration completed successfully!")

if __name__ == "__main__":
    run_migration()
