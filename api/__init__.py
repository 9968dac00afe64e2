"""HTTP API for the GeoScale heat map engine."""
