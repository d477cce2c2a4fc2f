"""Rule store: validation, the authoritative in-memory store and its persistence collaborators."""
