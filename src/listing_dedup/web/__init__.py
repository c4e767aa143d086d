"""HTTP API for moderation tooling."""
