import logging

logger = logging.getLogger(__name__)


def send_notification_email(
    to_email: str,
    name: str,
    subject: str,
    body: str,
) -> bool:
    """
    Email delivery is owned by the mail service; this only records the dispatch.
    Replace with a real provider (SMTP / Resend) when the service is wired in.
    """
    logger.info(f"[EMAIL] To={to_email} | Name={name} | Subject={subject}")
    logger.debug(f"[EMAIL] Body: {body}")
    return True
