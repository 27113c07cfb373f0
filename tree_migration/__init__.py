"""
tree_migration - track recurring trees across a time-ordered image series
and render the result as a time-lapse video.

Pipeline stages:
1. Ingestion: Discover, order and decode images (Frame)
2. Extraction: Candidate trees per frame (ObjectDescriptor)
3. Tracking: Cross-frame correspondence (Track table)
4. Sequencing: Ordered, gap-filled output frames (CompositeFrame)
5. Encoding: Video sink
"""

__version__ = "0.1.0"
