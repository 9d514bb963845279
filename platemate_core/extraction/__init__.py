from platemate_core.extraction.restaurants import CUISINES, extract_restaurants

__all__ = ["CUISINES", "extract_restaurants"]
