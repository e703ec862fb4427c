"""Document styling constants"""

from .colors import ProvenanceColors, normalize_color

__all__ = ["ProvenanceColors", "normalize_color"]
