"""HTTP surface for the prediction engine."""
