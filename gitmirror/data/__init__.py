"""
Configuration loading for the git mirror.

This package is responsible for:
* Determining the data directory (via env var + sensible default).
* Loading and persisting mirror-level settings (mirror.json).
* Loading the static table of mirrored repositories (repositories.yaml).
"""
