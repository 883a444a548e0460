"""Domain layer: slots, facilities, bookings and the allocation / pricing engines"""
