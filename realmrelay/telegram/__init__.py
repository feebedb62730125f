"""Telegram relay channel."""

from .gateway import TelegramGateway, format_notification

__all__ = ["TelegramGateway", "format_notification"]
