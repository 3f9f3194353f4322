"""Notionally: republish scraped social posts to Notion with media archived to Dropbox."""

__version__ = "1.0.0"
