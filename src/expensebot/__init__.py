"""Telegram bot that logs expenses through a category picker."""

__version__ = "0.1.0"
