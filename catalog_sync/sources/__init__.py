from catalog_sync.sources.models import CanonicalProduct, SourceBatch, validate_products

__all__ = ["CanonicalProduct", "SourceBatch", "validate_products"]
