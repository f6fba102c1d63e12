"""
Test Data Generators
"""

from .klv_generator import KLVGenerator

__all__ = ['KLVGenerator']
