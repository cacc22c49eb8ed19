"""Setuptools build hooks for compnet."""

from __future__ import annotations

from setuptools import setup

# Metadata lives in pyproject.toml; this shim keeps legacy editable installs working.
setup()
