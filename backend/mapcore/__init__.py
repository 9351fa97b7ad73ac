"""Geospatial raster and tile core for the map viewer backend.

This package reads GeoTIFF rasters and MBTiles archives that live on disk
and serves what a map client needs from them:

- Point queries over every visible raster layer, read pixel by pixel
- XYZ tiles from MBTiles archives, upscaled beyond the deepest stored zoom
- Cursor coordinates in degrees, UTM and map scale
- Layer registration with metadata cached per layer

See module sub-docstrings for details on architecture and usage.
"""
