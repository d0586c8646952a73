"""
Core package for shared infrastructure.

Settings, structured logging, domain exceptions and token handling used
across the order lifecycle service.
"""
