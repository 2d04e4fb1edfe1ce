"""
Skwad server package: settings, the server process and its entry point.
"""
