"""JSON API exposing the live vault metrics."""
