"""HTTP surface of the study assistant."""
