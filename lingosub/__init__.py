"""lingosub: chunked speech-to-text subtitles for long audio tracks."""

__version__ = "0.1.0"
