"""HTTP surface for the decision chain service."""
