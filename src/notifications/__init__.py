"""Notification dispatch: rate limiting, retry policy, notifiers, and the poller."""
