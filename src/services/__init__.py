"""
Service orchestration
"""
