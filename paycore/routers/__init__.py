"""
PayCore - API Routers
"""
