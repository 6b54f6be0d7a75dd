"""Push notification integration (Firebase Cloud Messaging)."""
