"""
CLI package for CreativeTracker
"""
