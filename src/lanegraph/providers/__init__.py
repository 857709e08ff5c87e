"""Commit sources: git repositories and JSON commit files."""

from .git import load_repository
from .jsonfile import load_commit_file

__all__ = ["load_commit_file", "load_repository"]
