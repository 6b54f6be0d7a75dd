"""Slack integration package.

- webhooks: incoming-webhook posting used by the Slack dispatcher.
"""
