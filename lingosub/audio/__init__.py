"""Audio side: waveform I/O, band-pass filter, silence scan, segmentation; optional chunk export."""
from .filters import VocalFilter
from .receiver import WaveformReceiver
from .recorder import ChunkRecorderBase, create_chunk_recorder
from .segmenter import ChunkDefinition, FixedScheduleSegmenter, VADSegmenter, create_segmenter
from .silence import SilenceRun, SilenceScanner

__all__ = [
    "ChunkDefinition",
    "ChunkRecorderBase",
    "FixedScheduleSegmenter",
    "SilenceRun",
    "SilenceScanner",
    "VADSegmenter",
    "VocalFilter",
    "WaveformReceiver",
    "create_chunk_recorder",
    "create_segmenter",
]
