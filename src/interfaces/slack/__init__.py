# src/interfaces/slack/__init__.py
"""Slack integration package for the responder.

This package provides the Slack bot implementation using AsyncApp
and AsyncSocketModeHandler from slack-bolt.

Entry point: python -m src.interfaces.slack.bot
"""
