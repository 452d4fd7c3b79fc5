"""
Heirloom: dead man's switch for digital-asset inheritance.
"""
