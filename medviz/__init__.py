"""medviz: turn pasted medical report text into a visual body map of findings."""

__version__ = "0.1.0"
