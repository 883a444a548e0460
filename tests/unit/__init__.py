"""
Unit Tests Package for the ParkSmart booking core
"""
