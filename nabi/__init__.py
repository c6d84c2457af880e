"""Nabi: a WhatsApp bot that turns requests into songs, images and videos."""

__version__ = "0.1.0"
