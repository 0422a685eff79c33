"""HTTP surface for triggering and inspecting the analysis engine."""
