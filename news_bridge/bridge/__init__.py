"""
Feed-to-webhook bridge: connection lifecycle, subscription registry, event
normalization, webhook delivery, and the ops HTTP surface.
"""
