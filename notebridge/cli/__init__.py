"""
The NoteBridge command-line interface.
"""
