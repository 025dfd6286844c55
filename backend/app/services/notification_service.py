"""Notification decision engine.

One evaluation pass walks every user whose ``next_notification_at`` is due (or
unset), runs the engagement rules in a fixed order, then pushes the schedule to
the user's next local delivery window. Each rule owns its dedup window and is
checked against the event log through :meth:`NotificationService.has_sent`, so
repeated passes are idempotent.
"""

import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.exceptions import DeliveryError, TransientDataError, translate_data_errors
from app.models import NotificationEvent, SquadMember, User, WorkoutReaction, WorkoutShare
from app.schemas import PassSummary
from app.services.metrics_service import MetricsService
from app.services.push_service import PushMessage, get_push_provider, is_push_token
from app.services.streaks import latest_run
from app.timeutils import (
    clamp_tz_offset_minutes,
    compute_next_notification_at,
    is_quiet_hour,
    local_date,
    local_day_start,
    local_week_range,
    to_local,
    to_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

NOTIFICATION_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
NOTIFICATION_ID_LENGTH = 12

COUNTED_STATUSES = ("sent", "silent")
STREAK_RISK_MIN_DAYS = 3
STREAK_LOOKBACK_DAYS = 365
INACTIVITY_MIN_DAYS = 5
INACTIVITY_MAX_DAYS = 7
SQUAD_WINDOW = timedelta(hours=24)


def generate_notification_id() -> str:
    return "".join(secrets.choice(NOTIFICATION_ID_ALPHABET) for _ in range(NOTIFICATION_ID_LENGTH))


def format_comment_preview(comment: str, max_length: int = 90) -> str:
    normalized = re.sub(r"\s+", " ", comment or "").strip()
    if not normalized:
        return "Tap to view the comment."
    if len(normalized) <= max_length:
        return normalized
    return f"{normalized[:max_length - 3]}..."


@dataclass
class SendOptions:
    bypass_quiet_hours: bool = False
    bypass_weekly_cap: bool = False
    deliver_silently_in_quiet_hours: bool = False


@dataclass
class NotificationPayload:
    type: str
    trigger_reason: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserOutcome:
    seeded: bool = False
    evaluated: bool = False
    events: List[NotificationEvent] = field(default_factory=list)
    rule_failures: int = 0


class NotificationService:
    """Evaluates engagement rules per user and logs every delivery decision."""

    def __init__(
        self,
        db: Session,
        push_provider=None,
        metrics_service: Optional[MetricsService] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.push_provider = push_provider or get_push_provider()
        self.metrics = metrics_service or MetricsService(db)
        self.settings = settings or get_settings()

    # ============== Delivery log ==============

    @translate_data_errors
    def has_sent(self, user_id: int, notification_type: str, since: datetime) -> bool:
        """Whether any event of this type was logged since ``since`` (any status)."""
        count = (
            self.db.query(func.count(NotificationEvent.id))
            .filter(
                NotificationEvent.user_id == user_id,
                NotificationEvent.notification_type == notification_type,
                NotificationEvent.sent_at >= since,
            )
            .scalar()
        )
        return (count or 0) > 0

    @translate_data_errors
    def count_deliveries_since(self, user_id: int, since: datetime) -> int:
        """Sent or silently delivered events since ``since``."""
        count = (
            self.db.query(func.count(NotificationEvent.id))
            .filter(
                NotificationEvent.user_id == user_id,
                NotificationEvent.sent_at >= since,
                NotificationEvent.delivery_status.in_(COUNTED_STATUSES),
            )
            .scalar()
        )
        return count or 0

    def has_reached_weekly_cap(self, user: User, now: datetime) -> bool:
        cap = user.preferences["max_notifications_per_week"]
        return self.count_deliveries_since(user.id, now - timedelta(days=7)) >= cap

    def is_quiet_time(self, user: User, now: datetime) -> bool:
        prefs = user.preferences
        local_now = to_local(now, clamp_tz_offset_minutes(user.timezone_offset_minutes))
        return is_quiet_hour(local_now.hour, prefs["quiet_hours_start"], prefs["quiet_hours_end"])

    @translate_data_errors
    def _log_event(self, event: NotificationEvent) -> NotificationEvent:
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def send_notification(
        self,
        user: User,
        payload: NotificationPayload,
        options: Optional[SendOptions] = None,
        now: Optional[datetime] = None,
    ) -> Optional[NotificationEvent]:
        """
        Deliver one notification and log the outcome.

        Returns None when the send is suppressed (quiet hours, weekly cap);
        otherwise exactly one event with status sent, silent, failed or no_token.
        """
        options = options or SendOptions()
        now = now or utc_now()

        quiet = self.is_quiet_time(user, now)
        if quiet and not (options.bypass_quiet_hours or options.deliver_silently_in_quiet_hours):
            logger.info("Skipped %s for %s - quiet hours", payload.type, user.id)
            return None

        if not options.bypass_weekly_cap and self.has_reached_weekly_cap(user, now):
            logger.info("Skipped %s for %s - weekly cap reached", payload.type, user.id)
            return None

        silent = quiet and options.deliver_silently_in_quiet_hours
        delivery_status = "silent" if silent else "sent"
        error_message = None

        if is_push_token(user.push_token):
            message = PushMessage(
                to=user.push_token,
                title=payload.title,
                body=payload.body,
                data=payload.data,
                silent=silent,
            )
            try:
                ticket = self.push_provider.send_one(message)
                if not ticket.ok:
                    delivery_status = "failed"
                    error_message = ticket.message or "Unknown error"
                    logger.error("Push ticket error for %s: %s", user.id, error_message)
            except DeliveryError as e:
                delivery_status = "failed"
                error_message = str(e)
                logger.error("Push delivery failed for %s: %s", user.id, e)
            except Exception as e:
                delivery_status = "failed"
                error_message = str(e) or type(e).__name__
                logger.exception("Unexpected push provider error for %s", user.id)
        else:
            delivery_status = "no_token"

        event = self._log_event(
            NotificationEvent(
                id=generate_notification_id(),
                user_id=user.id,
                notification_type=payload.type,
                trigger_reason=payload.trigger_reason,
                title=payload.title,
                body=payload.body,
                data=payload.data,
                sent_at=now,
                delivery_status=delivery_status,
                error_message=error_message[:500] if error_message else None,
            )
        )
        logger.info("%s: %s to %s", delivery_status, payload.type, user.id)
        return event

    # ============== Rules ==============

    def check_weekly_goal_met(self, user: User, now: datetime) -> Optional[NotificationEvent]:
        """Celebrate once per local week, exactly when the count reaches the goal."""
        goal = user.weekly_goal or 0
        if not user.preferences["weekly_goal_met"] or goal <= 0:
            return None

        week = local_week_range(now, clamp_tz_offset_minutes(user.timezone_offset_minutes))
        completed = self.metrics.count_workouts_between(user.id, week.week_start_utc, week.week_end_utc)
        if completed != goal:
            return None
        if self.has_sent(user.id, "goal_met", week.week_start_utc):
            return None

        return self.send_notification(
            user,
            NotificationPayload(
                type="goal_met",
                trigger_reason=f"Completed {completed}/{goal} sessions",
                title="Weekly goal complete! 🎉",
                body=f"Amazing work! You hit your goal of {goal} workouts this week.",
                data={"weekly_goal": goal, "completed": completed},
            ),
            now=now,
        )

    def check_streak_risk(self, user: User, now: datetime) -> Optional[NotificationEvent]:
        """Nudge a 3+ day streak whose last workout was yesterday, once per local day."""
        if not user.preferences["goal_reminders"]:
            return None

        tz = clamp_tz_offset_minutes(user.timezone_offset_minutes)
        finished = self.metrics.get_finished_times(user.id, since=now - timedelta(days=STREAK_LOOKBACK_DAYS))
        streak, last_day = latest_run(local_date(moment, tz) for moment in finished)
        if last_day is None or streak < STREAK_RISK_MIN_DAYS:
            return None

        today = local_date(now, tz)
        if last_day != today - timedelta(days=1):
            return None

        today_start_utc = to_utc(local_day_start(now, tz), tz)
        if self.has_sent(user.id, "streak_risk", today_start_utc):
            return None

        return self.send_notification(
            user,
            NotificationPayload(
                type="streak_risk",
                trigger_reason=f"streak {streak} days, last workout yesterday",
                title="Keep your streak alive 🔥",
                body=f"You're on a {streak}-day streak. Log a session today to keep it going.",
                data={"current_streak": streak},
            ),
            now=now,
        )

    def check_goal_risk(self, user: User, now: datetime) -> Optional[NotificationEvent]:
        """Warn when one or two local days are left and the goal is not met yet."""
        goal = user.weekly_goal or 0
        if not user.preferences["goal_reminders"] or goal <= 0:
            return None

        week = local_week_range(now, clamp_tz_offset_minutes(user.timezone_offset_minutes))
        days_left = week.days_left
        if days_left < 1 or days_left > 2:
            return None

        completed = self.metrics.count_workouts_between(user.id, week.week_start_utc, week.week_end_utc)
        remaining = goal - completed
        if remaining < 1:
            return None
        if self.has_sent(user.id, "goal_risk", week.week_start_utc):
            return None

        session_word = "session" if remaining == 1 else "sessions"
        day_word = "day" if days_left == 1 else "days"
        return self.send_notification(
            user,
            NotificationPayload(
                type="goal_risk",
                trigger_reason=f"{remaining} sessions remaining, {days_left} days left",
                title=f"{remaining} {session_word} to hit your goal! 🎯",
                body=f"You have {days_left} {day_word} left to complete your weekly goal. Keep going!",
                data={"remaining": remaining, "days_left": days_left},
            ),
            now=now,
        )

    def check_weekly_goal_missed(self, user: User, now: datetime) -> Optional[NotificationEvent]:
        """On local Sunday, recap a previous week that started but fell short."""
        goal = user.weekly_goal or 0
        if not user.preferences["goal_reminders"] or goal <= 0:
            return None

        week = local_week_range(now, clamp_tz_offset_minutes(user.timezone_offset_minutes))
        if week.weekday != 0:
            return None

        completed = self.metrics.count_workouts_between(
            user.id, week.previous_week_start_utc, week.week_start_utc
        )
        if completed == 0 or completed >= goal:
            return None
        if self.has_sent(user.id, "goal_missed", week.week_start_utc):
            return None

        return self.send_notification(
            user,
            NotificationPayload(
                type="goal_missed",
                trigger_reason=f"completed {completed}/{goal} last week",
                title="Fresh week, fresh start 💫",
                body=f"Last week you logged {completed}/{goal} sessions. Want to plan one for today?",
                data={"weekly_goal": goal, "completed": completed},
            ),
            now=now,
        )

    def check_inactivity(self, user: User, now: datetime) -> Optional[NotificationEvent]:
        if not user.preferences["inactivity_nudges"]:
            return None

        last_workout = self.metrics.get_last_workout_at(user.id)
        if last_workout is None:
            return None

        days_since = int((now - last_workout).total_seconds() // 86400)
        if days_since < INACTIVITY_MIN_DAYS or days_since > INACTIVITY_MAX_DAYS:
            return None
        if self.has_sent(user.id, "inactivity", now - timedelta(days=7)):
            return None

        return self.send_notification(
            user,
            NotificationPayload(
                type="inactivity",
                trigger_reason=f"{days_since} days since last workout",
                title="We miss you! 💪",
                body=f"It's been {days_since} days since your last workout. Ready to get back to it?",
                data={"days_since_last_workout": days_since},
            ),
            now=now,
        )

    @translate_data_errors
    def _top_squad_reactor(self, user: User, since: datetime):
        """Squad mate with the most emoji reactions on the user's shares since ``since``."""
        squad_ids = [
            row.squad_id
            for row in self.db.query(SquadMember.squad_id).filter(SquadMember.user_id == user.id).all()
        ]
        if not squad_ids:
            return None

        teammates = select(SquadMember.user_id).where(SquadMember.squad_id.in_(squad_ids))
        reaction_count = func.count(WorkoutReaction.id)
        return (
            self.db.query(User.name.label("reactor_name"), reaction_count.label("reaction_count"))
            .select_from(WorkoutReaction)
            .join(
                WorkoutShare,
                (WorkoutReaction.target_type == "share") & (WorkoutReaction.target_id == WorkoutShare.id),
            )
            .join(User, User.id == WorkoutReaction.user_id)
            .filter(
                WorkoutShare.user_id == user.id,
                WorkoutReaction.user_id != user.id,
                WorkoutReaction.user_id.in_(teammates),
                or_(WorkoutReaction.reaction_type.is_(None), WorkoutReaction.reaction_type == "emoji"),
                WorkoutReaction.created_at >= since,
                WorkoutReaction.deleted_at.is_(None),
            )
            .group_by(User.id, User.name)
            .order_by(reaction_count.desc(), User.name.asc())
            .first()
        )

    def check_squad_activity(self, user: User, now: datetime) -> Optional[NotificationEvent]:
        """Batch the last day's squad reactions into one note about the top reactor."""
        if not user.preferences["squad_activity"]:
            return None

        since = now - SQUAD_WINDOW
        if self.has_sent(user.id, "squad_reaction", since):
            return None

        top = self._top_squad_reactor(user, since)
        if top is None:
            return None

        reactor_name = top.reactor_name or "A teammate"
        return self.send_notification(
            user,
            NotificationPayload(
                type="squad_reaction",
                trigger_reason=f"{top.reaction_count} reactions from {reactor_name}",
                title="Your squad cheered you on! 🙌",
                body=f"{reactor_name} and others reacted to your workout",
                data={"reactor_name": reactor_name, "reaction_count": top.reaction_count},
            ),
            now=now,
        )

    def rules(self) -> List[Callable[[User, datetime], Optional[NotificationEvent]]]:
        return [
            self.check_weekly_goal_met,
            self.check_streak_risk,
            self.check_goal_risk,
            self.check_weekly_goal_missed,
            self.check_inactivity,
            self.check_squad_activity,
        ]

    # ============== Scheduling ==============

    @translate_data_errors
    def schedule_next_notification(self, user: User, now: datetime, not_today: bool = True) -> datetime:
        next_at = compute_next_notification_at(
            user.id,
            clamp_tz_offset_minutes(user.timezone_offset_minutes),
            now=now,
            local_hour=self.settings.notification_local_hour,
            window_minutes=self.settings.notification_window_minutes,
            not_today=not_today,
        )
        user.next_notification_at = next_at
        self.db.commit()
        return next_at

    def _run_rule(self, rule, user: User, now: datetime, outcome: UserOutcome) -> None:
        try:
            event = rule(user, now)
        except TransientDataError as e:
            outcome.rule_failures += 1
            logger.error("Rule %s failed for user %s: %s", rule.__name__, user.id, e)
            self.db.rollback()
            return
        if event is not None:
            outcome.events.append(event)

    def process_user(self, user: User, now: datetime, force: bool = False) -> UserOutcome:
        """Run one user through the pass: seed when not due, else all rules and reschedule."""
        outcome = UserOutcome()
        due = force or (user.next_notification_at is not None and user.next_notification_at <= now)

        if not due:
            if user.next_notification_at is None:
                self.schedule_next_notification(user, now, not_today=False)
                outcome.seeded = True
            return outcome

        outcome.evaluated = True
        for rule in self.rules():
            self._run_rule(rule, user, now, outcome)

        self.schedule_next_notification(user, now)
        return outcome

    def process_notifications(self, force: bool = False, now: Optional[datetime] = None) -> PassSummary:
        """
        Evaluate every eligible user once.

        Eligible users are snapshotted at the start: ``next_notification_at`` unset
        or due, or everyone when forced. A failure for one user is logged and the
        pass moves on; that user keeps the old schedule and is retried next pass.
        """
        now = now or utc_now()
        summary = PassSummary(started_at=now, forced=force)
        logger.info("Starting notification pass (force=%s)", force)

        query = self.db.query(User)
        if not force:
            query = query.filter(
                or_(User.next_notification_at.is_(None), User.next_notification_at <= now)
            )
        users = query.order_by(User.id).all()
        summary.users_considered = len(users)
        logger.info("Processing %d users", len(users))

        for user in users:
            user_id = user.id
            try:
                outcome = self.process_user(user, now, force=force)
            except Exception:
                summary.user_failures += 1
                logger.exception("Error processing user %s", user_id)
                self.db.rollback()
                continue

            summary.users_seeded += int(outcome.seeded)
            summary.users_evaluated += int(outcome.evaluated)
            summary.events_logged += len(outcome.events)
            summary.rule_failures += outcome.rule_failures

        logger.info(
            "Notification pass complete: %d evaluated, %d seeded, %d events, %d failures",
            summary.users_evaluated,
            summary.users_seeded,
            summary.events_logged,
            summary.user_failures + summary.rule_failures,
        )
        return summary

    # ============== Immediate notifications ==============

    def send_squad_activity_notification(
        self,
        user_id: int,
        activity_type: str,
        actor_name: str,
        squad_name: Optional[str] = None,
        workout_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[NotificationEvent]:
        """Immediate note when a squad mate reacts or completes their weekly goal."""
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None or not user.preferences["squad_activity"]:
            return None

        data = {"actor_name": actor_name, "squad_name": squad_name, "workout_name": workout_name}
        if activity_type == "reaction":
            payload = NotificationPayload(
                type="squad_reaction",
                trigger_reason="immediate_reaction",
                title=f"{actor_name} reacted to your workout! 🔥",
                body=(
                    f"{actor_name} cheered on your {workout_name}"
                    if workout_name
                    else f"{actor_name} reacted to your workout"
                ),
                data=data,
            )
        elif activity_type == "goal_met" and squad_name:
            payload = NotificationPayload(
                type="squad_goal_met",
                trigger_reason="teammate_goal_completion",
                title=f"{actor_name} crushed their weekly goal! 💪",
                body=f"Your squad mate in {squad_name} just completed their weekly goal",
                data=data,
            )
        else:
            return None

        return self.send_notification(user, payload, now=now)

    def send_workout_comment_notification(
        self,
        target_user_id: int,
        commenter_user_id: int,
        commenter_name: str,
        comment: str,
        target_type: str,
        target_id: int,
        now: Optional[datetime] = None,
    ) -> Optional[NotificationEvent]:
        """Comments skip the weekly cap and arrive silently during quiet hours."""
        if target_user_id == commenter_user_id:
            return None

        user = self.db.query(User).filter(User.id == target_user_id).first()
        if user is None or not user.preferences["squad_activity"]:
            return None

        return self.send_notification(
            user,
            NotificationPayload(
                type="workout_comment",
                trigger_reason=f"comment_{target_type}",
                title=f"{commenter_name} commented on your workout 💬",
                body=format_comment_preview(comment),
                data={
                    "commenter_id": commenter_user_id,
                    "commenter_name": commenter_name,
                    "target_type": target_type,
                    "target_id": target_id,
                },
            ),
            SendOptions(bypass_weekly_cap=True, deliver_silently_in_quiet_hours=True),
            now=now,
        )

    def send_friend_request_notification(
        self,
        target_user_id: int,
        requester_user_id: int,
        requester_name: str,
        requester_handle: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[NotificationEvent]:
        """Friend requests are always sent; no preference flag governs them."""
        user = self.db.query(User).filter(User.id == target_user_id).first()
        if user is None:
            return None

        who = f"{requester_name} ({requester_handle})" if requester_handle else requester_name
        return self.send_notification(
            user,
            NotificationPayload(
                type="friend_request",
                trigger_reason="new_follower",
                title="New friend request 👋",
                body=f"{who} wants to connect",
                data={
                    "requester_id": requester_user_id,
                    "requester_name": requester_name,
                    "requester_handle": requester_handle,
                },
            ),
            now=now,
        )

    def send_friend_acceptance_notification(
        self,
        original_requester_id: int,
        acceptor_user_id: int,
        acceptor_name: str,
        acceptor_handle: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[NotificationEvent]:
        user = self.db.query(User).filter(User.id == original_requester_id).first()
        if user is None:
            return None

        who = f"{acceptor_name} ({acceptor_handle})" if acceptor_handle else acceptor_name
        return self.send_notification(
            user,
            NotificationPayload(
                type="friend_acceptance",
                trigger_reason="request_accepted",
                title="Friend request accepted! 🎉",
                body=f"{who} accepted your friend request",
                data={
                    "acceptor_id": acceptor_user_id,
                    "acceptor_name": acceptor_name,
                    "acceptor_handle": acceptor_handle,
                },
            ),
            now=now,
        )

    def log_test_notification(self, user: User, now: Optional[datetime] = None) -> NotificationEvent:
        """Inbox-only test entry: no push, not counted toward the weekly cap."""
        return self._log_event(
            NotificationEvent(
                id=generate_notification_id(),
                user_id=user.id,
                notification_type="test",
                trigger_reason="test",
                title="Test Notification",
                body="This is a test notification to verify your inbox is working correctly.",
                data={"test": True},
                sent_at=now or utc_now(),
                delivery_status="inbox_only",
            )
        )
