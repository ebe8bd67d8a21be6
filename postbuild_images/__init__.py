"""
postbuild-images — Post-build image optimization for static sites.
"""

__version__ = "0.4.0"
