"""Module __init__: foundational settings shared by every pipeline stage."""
#
# WHAT'S IN THIS MODULE:
# - config.py: parser limits, layout geometry, logging setup
#
