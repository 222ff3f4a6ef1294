import datetime
import logging
from typing import Dict, Iterable

from firebase_admin import messaging

from ..User.models import GM_ROLES
from .models import NotificationDB, NotificationType, ReferenceType

# format: {lang: {notif_type: (title, body)}} title and body are format strings
LANGUAGES = {
    "en": {
        NotificationType.EVIDENCE_APPROVED: ("Evidence approved", "Your evidence for \"{0}\" was approved"),
        NotificationType.EVIDENCE_REJECTED: ("Evidence needs another look", "Your evidence for \"{0}\" was returned: {1}"),
        NotificationType.EXTENSION_APPROVED: ("Extension approved", "Your deadline for \"{0}\" is now {1}"),
        NotificationType.EXTENSION_DENIED: ("Extension denied", "Your extension request for \"{0}\" was denied"),
        NotificationType.QUEST_COMPLETED: ("Quest completed!", "You completed \"{0}\" and earned {1} points"),
        NotificationType.QUEST_COMPLETION_REJECTED: ("Quest returned", "\"{0}\" needs more work before it can be completed. {1}"),
        NotificationType.DEADLINE_APPROACHING: ("Deadline approaching", "\"{0}\" is due {1}"),
        NotificationType.QUEST_ACCEPTED: ("Quest accepted", "{0} accepted \"{1}\""),
        NotificationType.EVIDENCE_SUBMITTED: ("New submission", "{0} submitted evidence for \"{1}\""),
        NotificationType.EXTENSION_REQUESTED: ("Extension requested", "{0} asked for more time on \"{1}\""),
        NotificationType.QUEST_ABANDONED: ("Quest abandoned", "{0} abandoned \"{1}\""),
    },
}

DEFAULT_LANG = "en"


def construct_notif(lang: str, notif_type: NotificationType, params: Iterable):
    title, body_format = LANGUAGES.get(lang, LANGUAGES[DEFAULT_LANG]).get(notif_type, ("", ""))
    params = ["" if p is None else p for p in params]
    try:
        body = body_format.format(*params)
    except IndexError:
        logging.warning(f"Missing parameters for notification {notif_type.value}: {params}")
        body = body_format
    return title, body.strip()


def send_notification_user(title: str, body: str, fcm_token: str, data: Dict = None):
    if not fcm_token:
        return

    try:
        # convert args to string
        if data:
            data = {k: str(v) for k, v in data.items()}

        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            token=fcm_token,
            data=data,
        )
        messaging.send(message)
    except Exception as e:
        logging.error(f"Error sending notification to {fcm_token} title:{title} body:{body}; {e}")


class Notifier:
    """Writes inbox rows and pushes to devices that registered an FCM token."""

    def __init__(self, store, clock=None):
        self.store = store
        self.clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))

    def notify(self, user_id: str, notif_type: NotificationType, params: Iterable = (),
               reference_type: ReferenceType = None, reference_id: str = None) -> dict:
        title, body = construct_notif(DEFAULT_LANG, notif_type, params)
        notification = NotificationDB(
            user_id=user_id,
            type=notif_type,
            title=title,
            message=body,
            reference_type=reference_type,
            reference_id=reference_id,
            created_at=self.clock(),
        )
        row = self.store.add_notification(notification.model_dump(mode="json") | {"created_at": notification.created_at})

        user = self.store.get_user(user_id) or {}
        send_notification_user(
            title,
            body,
            user.get("fcm_token"),
            data={"type": notif_type.value, "reference_id": reference_id or ""},
        )
        return row

    def notify_gms(self, notif_type: NotificationType, params: Iterable = (),
                   reference_type: ReferenceType = None, reference_id: str = None) -> int:
        params = list(params)
        game_masters = self.store.list_role_members(GM_ROLES)
        for gm_id in game_masters:
            self.notify(gm_id, notif_type, params, reference_type, reference_id)
        return len(game_masters)
