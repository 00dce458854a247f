"""Outbound collaborators"""
