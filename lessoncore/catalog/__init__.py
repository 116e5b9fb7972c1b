"""Course catalog loading."""
from lessoncore.catalog.loader import SAMPLE_CATALOG_PATH, Catalog, load_catalog

__all__ = ["SAMPLE_CATALOG_PATH", "Catalog", "load_catalog"]
