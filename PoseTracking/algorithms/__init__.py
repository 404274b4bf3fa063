"""
Algorithms: geometry, optimization and registration.
"""
