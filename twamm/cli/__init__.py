"""
TWAMM CLI Tools
"""
