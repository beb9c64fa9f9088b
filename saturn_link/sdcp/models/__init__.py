"""Saturn printer data models."""
