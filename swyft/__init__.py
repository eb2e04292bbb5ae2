"""
Swyft - PIN rendezvous and direct peer-to-peer file transfer.

A signaling server pairs two peers by a 6-digit PIN, then file bytes
move over a direct channel with backpressure, pause/resume and cancel.
"""

__version__ = "1.0.0"

__all__ = ['__version__']
