"""
End-to-end: GeoTIFF inputs -> seed() -> TileStore on disk -> HTTP tile API
"""

import json
import os
import sys
from pathlib import Path

import numpy as np
import pytest
from fastapi.testclient import TestClient

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.geo import GLOBAL_GEODETIC
from common.types import SeedConfig, TileKey
from scripts.make_demo_data import synthesize_imagery, write_dem_tif, write_imagery_tif
from seeder.config import build_sources, load_config, parse_bounds
from seeder.seed import seed
from tile_cache.server import create_app
from tile_cache.store import TileStore


BBOX = (-77.12, 38.80, -76.90, 38.99)


@pytest.fixture(scope="module")
def seeded(tmp_path_factory):
    """Seed levels 8..10 of a small area from demo GeoTIFFs, once for the module."""
    work = tmp_path_factory.mktemp("pipeline")
    write_imagery_tif(work / "imagery.tif", synthesize_imagery((512, 512), seed=5), BBOX)
    write_dem_tif(work / "dem.tif", BBOX, (64, 64))

    cfg_path = work / "seed.yaml"
    cfg_path.write_text(
        "\n".join([
            "profile: global-geodetic",
            "cache:",
            f"  root: {work / 'cache'}",
            "image:",
            f"  - {{name: imagery, driver: geotiff, path: {work / 'imagery.tif'}, min_level: 8, max_level: 10, tile_size: 64}}",
            "  - {name: preview, driver: synthetic, max_level: 10, cache: false}",
            "elevation:",
            f"  - {{name: dem, driver: geotiff, path: {work / 'dem.tif'}, min_level: 8, max_level: 10, tile_size: 16}}",
        ])
    )
    P = load_config(str(cfg_path))
    sources = build_sources(P)
    config = SeedConfig(min_level=0, max_level=10, bounds=parse_bounds(list(BBOX), sources.profile))
    report = seed(config, sources, level_policy="window", workers=3)
    return report, TileStore(str(work / "cache"))


class TestSeedFromGeoTiff:
    def test_report(self, seeded):
        report, _ = seeded
        assert report.ok, report.to_dict()
        assert report.max_level == 10
        assert report.skipped_sources == [("image", "preview")]
        assert report.materialized["imagery"] > 0
        assert report.materialized["dem"] > 0
        json.dumps(report.to_dict())

    def test_store_matches_report(self, seeded):
        report, store = seeded
        stats = store.stats()
        assert set(stats["layers"]) == {"imagery", "dem"}
        assert stats["layers"]["imagery"]["tiles"] == report.materialized["imagery"]
        assert set(stats["layers"]["imagery"]["levels"]) <= {8, 9, 10}
        assert not (store.root / "preview").exists()

    def test_stored_tiles_cover_the_area(self, seeded):
        _, store = seeded
        for z, x, y in store.iter_tiles("imagery"):
            meta = store.metadata("imagery", z, x, y)
            west, south, east, north = meta["bbox"]
            assert west <= BBOX[2] and BBOX[0] <= east
            assert south <= BBOX[3] and BBOX[1] <= north
            assert meta["zoom"] == z

    def test_imagery_tiles_have_content(self, seeded):
        _, store = seeded
        z, x, y = next(t for t in store.iter_tiles("imagery") if t[0] == 10)
        img = store.get_image("imagery", _key(z, x, y))
        assert img.shape == (64, 64, 3)
        assert img.max() > 0

    def test_heightfields_within_dem_range(self, seeded):
        _, store = seeded
        for z, x, y in store.iter_tiles("dem"):
            grid = store.get_heightfield("dem", _key(z, x, y))
            finite = grid[np.isfinite(grid)]
            assert finite.size > 0
            assert finite.min() >= 40.0 - 1e-3
            assert finite.max() <= 160.0 + 1e-3

    def test_reseeding_hits_the_cache(self, seeded):
        report, store = seeded
        P = load_config(str(Path(store.root).parent / "seed.yaml"))
        sources = build_sources(P)
        config = SeedConfig(min_level=0, max_level=10, bounds=parse_bounds(list(BBOX), sources.profile))
        again = seed(config, sources, level_policy="window")

        assert again.materialized == report.materialized
        imagery = sources.image_sources[0]
        # only tiles that came back empty the first time are asked for again
        assert imagery.misses == report.empty.get("imagery", 0)
        assert imagery.hits == report.materialized["imagery"]


class TestTileApi:
    @pytest.fixture
    def client(self, seeded):
        _, store = seeded
        return TestClient(create_app(store))

    def test_health_and_stats(self, client, seeded):
        _, store = seeded
        assert client.get("/health").json()["exists"] is True
        body = client.get("/stats").json()
        assert body["tiles"] == store.stats()["tiles"]

    def test_tile_png(self, client, seeded):
        _, store = seeded
        z, x, y = next(iter(store.iter_tiles("imagery")))
        r = client.get(f"/tiles/imagery/{z}/{x}/{y}.png")
        assert r.status_code == 200
        assert r.headers["content-type"] == "image/png"
        assert r.content[:8] == b"\x89PNG\r\n\x1a\n"
        meta = json.loads(r.headers["X-Geo-Metadata"])
        assert meta["zoom"] == z
        assert meta["crs"] == "EPSG:4326"

    def test_missing_tile(self, client):
        r = client.get("/tiles/imagery/0/0/0.png")
        assert r.status_code == 404
        assert r.json()["detail"] == "tile_not_cached"

    def test_heights(self, client, seeded):
        _, store = seeded
        z, x, y = next(iter(store.iter_tiles("dem")))
        body = client.get(f"/heights/dem/{z}/{x}/{y}").json()
        assert body["shape"] == [16, 16]
        assert body["valid"] > 0
        assert 40.0 - 1e-3 <= body["min_m"] <= body["max_m"] <= 160.0 + 1e-3
        assert "heights" not in body

        raw = client.get(f"/heights/dem/{z}/{x}/{y}", params={"raw": "true"}).json()
        assert len(raw["heights"]) == 16

    def test_missing_heights(self, client):
        assert client.get("/heights/dem/3/0/0").status_code == 404


def _key(z, x, y):
    return TileKey(level=z, x=x, y=y, profile=GLOBAL_GEODETIC)
