"""
Authorization checks for message and user routes.

All checks take the authenticated principal explicitly and raise
Unauthorized when it is not allowed.
"""

import logging

from app.errors import Unauthorized

logger = logging.getLogger(__name__)


def ensure_can_read(principal: str, message: dict) -> None:
    """Sender and recipient may view a message."""
    if principal not in (message["from_user"]["username"], message["to_user"]["username"]):
        logger.warning(f"{principal} denied read on message {message['id']}")
        raise Unauthorized("Unauthorized")


def ensure_can_mark_read(principal: str, message: dict) -> None:
    """Only the recipient may mark a message read."""
    if principal != message["to_user"]["username"]:
        logger.warning(f"{principal} denied mark-read on message {message['id']}")
        raise Unauthorized("Unauthorized")


def ensure_correct_user(principal: str, username: str) -> None:
    if principal != username:
        logger.warning(f"{principal} denied access to user {username}")
        raise Unauthorized("Unauthorized")
