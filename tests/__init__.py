"""
Tile cache seeder test suite

Structure:
- unit/: Unit tests for individual components
- integration/: Seeding real GeoTIFFs into an on-disk store and serving it
- fixtures/: Fake tile sources shared by the tests
"""
