"""
GeoScale Heat Map Engine

Local search visibility for a business, point by point:
1. Lays a grid of coordinates around the business location
2. Checks its Google Maps position at every point (DataForSEO)
3. Aggregates positions and colours the map
4. Turns weak points into town names to target (Google Geocoding)
5. Stores the grid and scan history for trend charts
"""

__version__ = "0.1.0"
