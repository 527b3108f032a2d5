"""
Outgoing e-mail over SMTP using the MAIL_* settings of the current app.
"""
import smtplib
import logging
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger(__name__)


def sendmail(addr, text, subject):
    """
    Send a plain-text e-mail.

    Returns:
        tuple: (success: bool, message: str)
    """
    config = current_app.config
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = config["MAIL_DEFAULT_SENDER"]
    msg["To"] = addr
    msg.set_content(text)

    try:
        with smtplib.SMTP(config["MAIL_SERVER"], config.get("MAIL_PORT", 587), timeout=10) as smtp:
            if config.get("MAIL_USE_TLS"):
                smtp.starttls()
            if config.get("MAIL_USERNAME"):
                smtp.login(config["MAIL_USERNAME"], config.get("MAIL_PASSWORD") or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("Failed to send '%s' to %s: %s", subject, addr, e)
        return False, str(e)

    logger.info("Sent '%s' to %s", subject, addr)
    return True, "Email sent"
