"""TeamTrack client: derivation engine, Firestore client and CLI."""
