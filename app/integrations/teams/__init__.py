"""Microsoft Teams integration package."""
