"""codebrief: multi-round, validated codebase analysis for handover docs."""

__version__ = "0.1.0"
