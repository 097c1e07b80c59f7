"""Realtime chat core of the Keepsake backend."""
