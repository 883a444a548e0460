"""Application layer: booking service and DTOs"""
