"""
Notification sender for lifecycle emails.

Kinds:
- heartbeat_warning: owner missed a check-in, release is pending
- heartbeat_reminder: release is less than a day away
- inheritance_notice: a beneficiary has been granted access

Messages are localised (en, zh, fr; anything else falls back to en) and
delivered through an EmailSender.
"""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from heirloom.services.email_sender import EmailMessage, EmailSender, SendResult

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"


class NotificationKind(str, Enum):
    HEARTBEAT_WARNING = "heartbeat_warning"
    HEARTBEAT_REMINDER = "heartbeat_reminder"
    INHERITANCE_NOTICE = "inheritance_notice"


@dataclass
class Recipient:
    email: str
    name: Optional[str] = None


# (subject, body paragraphs, action label) per kind and locale
_TEMPLATES: Dict[NotificationKind, Dict[str, Dict[str, Any]]] = {
    NotificationKind.HEARTBEAT_WARNING: {
        "en": {
            "subject": "Action required: confirm you are still there",
            "body": [
                "Hi {owner_name},",
                "We have not heard from you for {days_since_last_seen} days.",
                "If you do not check in before {release_deadline}, your vault "
                "will be released to your beneficiaries.",
            ],
            "action": "I'm still here",
        },
        "zh": {
            "subject": "需要您的确认：请证明您一切安好",
            "body": [
                "{owner_name}，您好：",
                "我们已经 {days_since_last_seen} 天没有收到您的签到。",
                "如果您在 {release_deadline} 之前没有签到，您的保险库将被发放给您的受益人。",
            ],
            "action": "我还在",
        },
        "fr": {
            "subject": "Action requise : confirmez que vous êtes toujours là",
            "body": [
                "Bonjour {owner_name},",
                "Nous n'avons pas eu de vos nouvelles depuis {days_since_last_seen} jours.",
                "Sans confirmation avant le {release_deadline}, votre coffre sera "
                "transmis à vos bénéficiaires.",
            ],
            "action": "Je suis toujours là",
        },
    },
    NotificationKind.HEARTBEAT_REMINDER: {
        "en": {
            "subject": "Final reminder: your vault will be released soon",
            "body": [
                "Hi {owner_name},",
                "Your vault will be released to your beneficiaries in about "
                "{hours_remaining} hours ({release_deadline}).",
                "Check in now to cancel the release.",
            ],
            "action": "Cancel the release",
        },
        "zh": {
            "subject": "最后提醒：您的保险库即将发放",
            "body": [
                "{owner_name}，您好：",
                "您的保险库将在约 {hours_remaining} 小时后（{release_deadline}）发放给您的受益人。",
                "请立即签到以取消发放。",
            ],
            "action": "取消发放",
        },
        "fr": {
            "subject": "Dernier rappel : votre coffre sera bientôt transmis",
            "body": [
                "Bonjour {owner_name},",
                "Votre coffre sera transmis à vos bénéficiaires dans environ "
                "{hours_remaining} heures ({release_deadline}).",
                "Confirmez maintenant pour annuler la transmission.",
            ],
            "action": "Annuler la transmission",
        },
    },
    NotificationKind.INHERITANCE_NOTICE: {
        "en": {
            "subject": "{owner_name} has left you a digital legacy",
            "body": [
                "Dear {beneficiary_name},",
                "{owner_name} named you as a beneficiary. Their vault has now "
                "been released to you.",
                "Your access link is valid until {token_expires_at}.",
            ],
            "tracking": "A recovery kit is on its way. Tracking number: {tracking_number}",
            "action": "Open the vault",
        },
        "zh": {
            "subject": "{owner_name} 为您留下了一份数字遗产",
            "body": [
                "{beneficiary_name}，您好：",
                "{owner_name} 将您指定为受益人，其保险库现已向您开放。",
                "您的访问链接有效期至 {token_expires_at}。",
            ],
            "tracking": "恢复套件正在寄送中，运单号：{tracking_number}",
            "action": "打开保险库",
        },
        "fr": {
            "subject": "{owner_name} vous a laissé un héritage numérique",
            "body": [
                "Cher/Chère {beneficiary_name},",
                "{owner_name} vous a désigné(e) comme bénéficiaire. Son coffre "
                "vous est désormais accessible.",
                "Votre lien d'accès est valable jusqu'au {token_expires_at}.",
            ],
            "tracking": "Un kit de récupération est en route. Numéro de suivi : {tracking_number}",
            "action": "Ouvrir le coffre",
        },
    },
}


class _TemplateData(dict):
    def __missing__(self, key):
        return ""


def resolve_locale(locale: Optional[str]) -> str:
    """Map a locale such as 'fr-CA' or 'zh_CN' to a supported language."""
    if not locale:
        return DEFAULT_LOCALE
    language = locale.replace("_", "-").split("-")[0].lower()
    if language in _TEMPLATES[NotificationKind.HEARTBEAT_WARNING]:
        return language
    return DEFAULT_LOCALE


def render(kind: NotificationKind, template_data: Dict[str, Any], locale: Optional[str]) -> Dict[str, str]:
    """Render subject, text and HTML bodies for a notification."""
    template = _TEMPLATES[kind][resolve_locale(locale)]
    data = _TemplateData({k: v for k, v in template_data.items() if v is not None})

    subject = template["subject"].format_map(data)
    paragraphs = [line.format_map(data) for line in template["body"]]
    if data.get("tracking_number") and "tracking" in template:
        paragraphs.append(template["tracking"].format_map(data))

    action_url = data.get("action_url")
    text_body = "\n\n".join(paragraphs)
    if action_url:
        text_body += f"\n\n{template['action']}: {action_url}"

    html_paragraphs = "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)
    action_link = ""
    if action_url:
        action_link = (
            f'<p><a href="{html.escape(action_url, quote=True)}" '
            f'style="display: inline-block; padding: 10px 20px; background-color: #2f4858; '
            f'color: white; text-decoration: none; border-radius: 4px;">'
            f'{html.escape(template["action"])}</a></p>'
        )

    html_body = f"""
    <!DOCTYPE html>
    <html>
    <head><meta charset="utf-8"></head>
    <body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            {html_paragraphs}
            {action_link}
        </div>
    </body>
    </html>
    """
    return {"subject": subject, "text": text_body, "html": html_body}


class NotificationSender(ABC):
    """Contract the lifecycle core needs from a notification channel."""

    @abstractmethod
    def send(
        self,
        kind: NotificationKind,
        recipient: Recipient,
        template_data: Dict[str, Any],
        locale: Optional[str] = None,
    ) -> SendResult:
        pass


class EmailNotificationSender(NotificationSender):
    """Renders lifecycle notifications and sends them as email."""

    def __init__(self, email_sender: EmailSender):
        self.email_sender = email_sender

    def send(
        self,
        kind: NotificationKind,
        recipient: Recipient,
        template_data: Dict[str, Any],
        locale: Optional[str] = None,
    ) -> SendResult:
        rendered = render(kind, template_data, locale)
        message = EmailMessage(
            to_email=recipient.email,
            to_name=recipient.name,
            subject=rendered["subject"],
            html_body=rendered["html"],
            text_body=rendered["text"],
            tags=[kind.value],
        )
        result = self.email_sender.send(message)
        if not result.success:
            logger.warning(
                "Notification delivery failed",
                extra={"kind": kind.value, "error": result.error},
            )
        return result
