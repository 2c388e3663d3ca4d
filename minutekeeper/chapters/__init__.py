"""Chapter segmentation of the live transcript."""

from .segmentation import ChapterSegmentationEngine, classify, extract_topic

__all__ = [
    'ChapterSegmentationEngine',
    'classify',
    'extract_topic',
]
