"""MedTrack: pharmaceutical sales-force tracking backend."""

__version__ = "1.0.0"
