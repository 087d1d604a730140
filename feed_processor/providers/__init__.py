"""Provider adapters that turn provider payloads into feed items."""
