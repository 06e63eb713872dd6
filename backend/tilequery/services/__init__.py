"""Tile query services.

Submodules:
    - tile_geometry: tile envelopes, pixel sizes and scale denominators.
    - tokens: built-in ``!TOKEN!`` substitution in layer SQL.
    - params: named request parameters bound as ``$N`` placeholders.
    - decoder: result row decoding into geometry, id and tags.
    - tiles_postgis: end-to-end query building for a layer and tile.
"""
