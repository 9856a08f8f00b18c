"""Plan models, loading and presets."""
