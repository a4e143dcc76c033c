"""
Seeder — pre-populate tile caches for a map

- levels.py: which sources count and what level range they allow
- walker.py: depth-first quadtree walk with bounds pruning
- seed.py: `seed(config, sources, reporter) -> SeedReport`
- config.py / cli.py: YAML map config and the command line

Entry point:
    python -m seeder.cli --config config/seed.yaml
"""
from .seed import SeedReport, seed

__all__ = ["SeedReport", "seed"]
