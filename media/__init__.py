"""Trending token data, image rendering, hosting and message formatting."""
