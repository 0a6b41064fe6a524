"""Scene tracking for puppet performance scripts."""
