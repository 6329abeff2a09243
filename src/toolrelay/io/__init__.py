"""IO - serialization and transport framing for toolrelay."""
