"""Offline last-resort generation."""
