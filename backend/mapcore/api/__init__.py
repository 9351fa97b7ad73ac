"""API router subpackage for the map viewer backend.

Submodules:
    - layers: Registering, listing, describing and removing map layers.
    - query: Multi-layer point queries and cursor coordinate display.
    - tiles: XYZ tiles from MBTiles archives and remote tile sources.
    - deps: Shared FastAPI dependencies.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
