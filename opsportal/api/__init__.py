"""
API routers, mounted under the versioned prefix in main.py
"""
