"""Booking domain - lifecycle state machine, pricing and reviews"""
