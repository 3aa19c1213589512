"""Core LISA inference components."""
