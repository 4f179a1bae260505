"""
External data: forecast and return-period HTTP clients, location directory.
"""
