"""
Test package marker.

Lets test modules import shared fakes as `tests.ws_fakes`.
"""
