"""
Tile cache — sources, store and read-only server

- Producers for imagery (GeoTIFF, synthetic, XYZ over HTTP) and elevation (GeoTIFF, constant)
- CachedTileSource: puts a TileStore in front of any producer
- TileStore: `root/{layer}/{z}/{x}/{y}.png|.tif` plus `{y}.json` metadata
- server.py: /tiles, /heights, /stats, /health over a seeded store
"""
