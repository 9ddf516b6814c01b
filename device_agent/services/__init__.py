"""
Services layer
"""
