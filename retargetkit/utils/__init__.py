"""
Math helpers and command line tools.
"""
