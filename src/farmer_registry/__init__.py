"""
Farmer business registry: faceted query and analytics engine.
"""
