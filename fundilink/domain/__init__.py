"""Domain packages - bookings, payments, providers"""
