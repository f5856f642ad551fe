"""
PPMatch - Capabilities
======================

Cross-portfolio capability rollups per technology.
"""
