"""Template contexts and queue messages for listing notifications and reminders."""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from listing_notifier.delivery.models import MessageKind, MessagePayload, QueuedMessage
from listing_notifier.domain.models import Listing, User

REMIND_CALLBACK_PREFIX = "remind_me"
STOP_REMINDER_CALLBACK_PREFIX = "stop_reminder"
UTM_SOURCE = "telegrambot"


def listing_url(base_url: str, listing: Listing) -> str:
    return f"{base_url.rstrip('/')}/listing/{listing.slug}/?utm_source={UTM_SOURCE}"


def format_reward(listing: Listing) -> str:
    if listing.usd_value <= 0:
        return "Variable compensation"
    reward = f"${listing.usd_value:,.0f}"
    if listing.token:
        reward += f" in {listing.token}"
    return reward


def format_time_left(deadline: datetime, now: datetime) -> str:
    """Coarse "2 days 4 hours" style countdown; "less than an hour" near the end."""
    remaining = int((deadline - now).total_seconds())
    if remaining < 3600:
        return "less than an hour"

    days, remainder = divmod(remaining, 86400)
    hours = remainder // 3600
    parts = []
    if days:
        parts.append(f"{days} day{'s' if days != 1 else ''}")
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    return " ".join(parts)


def build_listing_context(
    listing: Listing,
    now: datetime,
    overlap: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    """Template context shared by match and reminder captions."""
    return {
        "listing_id": listing.id,
        "title": listing.title,
        "sponsor_name": listing.sponsor_name or "A sponsor",
        "listing_type": listing.type.value,
        "reward": format_reward(listing),
        "deadline": listing.deadline.strftime("%d %b %Y, %H:%M UTC"),
        "time_left": format_time_left(listing.deadline, now),
        "categories": sorted(listing.mapped_skills),
        "overlap": sorted(overlap or ()),
    }


def build_match_keyboard(listing: Listing, base_url: str, remind_hours: int) -> Dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {
                    "text": f"Remind me every {remind_hours} hours",
                    "callback_data": f"{REMIND_CALLBACK_PREFIX}:{listing.id}",
                },
                {"text": "Join", "url": listing_url(base_url, listing)},
            ]
        ]
    }


def build_reminder_keyboard(listing: Listing, base_url: str) -> Dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {
                    "text": "Stop reminders",
                    "callback_data": f"{STOP_REMINDER_CALLBACK_PREFIX}:{listing.id}",
                },
                {"text": "Join", "url": listing_url(base_url, listing)},
            ]
        ]
    }


def build_photo_message(
    user: User,
    image_ref: str,
    caption: str,
    reply_markup: Dict[str, Any],
) -> QueuedMessage:
    """A photo message with a Markdown caption, due immediately."""
    return QueuedMessage(
        user_id=user.id,
        chat_id=user.external_id,
        payload=MessagePayload(
            kind=MessageKind.PHOTO,
            content=image_ref,
            options={
                "caption": caption,
                "parse_mode": "Markdown",
                "reply_markup": reply_markup,
            },
        ),
    )
