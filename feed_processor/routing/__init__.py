"""Translation of edited query term lists into running feed sources."""
