"""
pyreload.cli - Command line interface.
"""
