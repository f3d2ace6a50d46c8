"""StudyTrack Sync - local-first event synchronization for study tools."""

__version__ = "1.0.0"
