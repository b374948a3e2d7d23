"""Loading, glitch detection, alignment and batching of eye-tracking capture data."""

__version__ = "0.1.0"
__all__ = ["batcher", "corruption_detector", "frame_correlator", "loader"]