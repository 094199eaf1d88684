"""
CLI package for ipmifan

This package provides the command-line interface for running the
fan controller.
"""

from .interface import main

__all__ = ['main']
