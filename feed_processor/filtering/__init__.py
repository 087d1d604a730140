"""Ban-list and profanity filtering."""
