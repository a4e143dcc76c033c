"""
Read-only HTTP access to a seeded cache. Never touches the original sources.

  uvicorn tile_cache.server:app --port 8000
"""
from __future__ import annotations

import json
from typing import Dict, Optional

import numpy as np
import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from seeder.config import DEFAULT_CONFIG_PATH, load_config
from tile_cache.store import HEIGHTFIELD_SUFFIX, IMAGE_SUFFIX, TileStore


def _height_summary(heights: np.ndarray) -> Dict:
    finite = heights[np.isfinite(heights)]
    if finite.size == 0:
        return {"min_m": None, "max_m": None, "mean_m": None, "valid": 0}
    return {
        "min_m": float(finite.min()),
        "max_m": float(finite.max()),
        "mean_m": float(finite.mean()),
        "valid": int(finite.size),
    }


def create_app(store: TileStore) -> FastAPI:
    app = FastAPI(title="Tile Cache API", version="1.0.0")

    # (Optional) CORS for local map viewers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {"status": "ok", "root": str(store.root), "exists": store.root.is_dir()}

    @app.get("/stats")
    def stats():
        return store.stats()

    @app.get("/tiles/{layer}/{z}/{x}/{y}.png")
    def tile(layer: str, z: int, x: int, y: int):
        """PNG bytes with the tile's georeferencing in `X-Geo-Metadata`."""
        try:
            path = store.tile_path(layer, z, x, y, IMAGE_SUFFIX)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid_layer")
        if not path.is_file():
            raise HTTPException(status_code=404, detail="tile_not_cached")
        meta = store.metadata(layer, z, x, y) or {}
        headers = {
            "X-Geo-Metadata": json.dumps(meta),
            "Cache-Control": "public, max-age=86400",
            "X-Tile-Z": str(z),
            "X-Tile-X": str(x),
            "X-Tile-Y": str(y),
        }
        return Response(content=path.read_bytes(), media_type="image/png", headers=headers)

    @app.get("/heights/{layer}/{z}/{x}/{y}")
    def heights(layer: str, z: int, x: int, y: int, raw: bool = Query(False)):
        """Heightfield summary; `raw=true` adds the full grid (NaN -> null)."""
        try:
            path = store.tile_path(layer, z, x, y, HEIGHTFIELD_SUFFIX)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid_layer")
        grid = TileStore.read_heightfield(path)
        if grid is None:
            raise HTTPException(status_code=404, detail="tile_not_cached")
        out = {
            "z": z,
            "x": x,
            "y": y,
            "shape": list(grid.shape),
            "meta": store.metadata(layer, z, x, y),
            **_height_summary(grid),
        }
        if raw:
            out["heights"] = [[None if not np.isfinite(v) else float(v) for v in row] for row in grid]
        return out

    return app


def app_from_config(path: str = DEFAULT_CONFIG_PATH, root: Optional[str] = None) -> FastAPI:
    P = load_config(path)
    return create_app(TileStore(root or P["cache"]["root"]))


app = app_from_config()


# -------- local dev entrypoint --------
if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
