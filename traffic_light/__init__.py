"""Traffic Light Rating - employer compliance rating engine.

Scores Track 1 (project data) and Track 2 (organiser expertise) assessments,
applies temporal decay and confidence weighting, blends the tracks, and
applies the EBA and sham contracting caps before classifying the result as a
traffic light colour.
"""

__version__ = "0.1.0"
