"""
Services module - Live lecture engine and its collaborators
"""
