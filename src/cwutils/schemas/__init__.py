"""JSON schemas bundled with cwutils."""
