"""ParkSmart - slot allocation, dynamic pricing and booking core for multi-floor parking facilities"""

__version__ = "1.0.0"
