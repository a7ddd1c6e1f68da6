"""Pure provider -> normalized entity mappings"""
