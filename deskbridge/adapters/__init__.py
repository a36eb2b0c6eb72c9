"""Adapters package - Bridge between the engine and Slack.

Contains the Slack Web API platform, the Socket Mode event handler and
the local bridge HTTP API.
"""
from __future__ import annotations

__all__ = [
    "SlackPlatform",
    "SlackEventHandler",
    "BridgeApiServer",
]

from deskbridge.adapters.slack_platform import SlackPlatform
from deskbridge.adapters.slack_events import SlackEventHandler
from deskbridge.adapters.bridge_api import BridgeApiServer
