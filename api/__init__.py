"""HTTP surface for the ghost mannequin pipeline."""
