"""Mailbox taxonomy discovery, suggestion and provisioning for Gmail and Outlook."""

__version__ = "0.1.0"
