"""
Negotiation Module - Direct Connection Setup

Produces the offer/answer blobs exchanged through rendezvous and turns
them into an open channel.
"""

from .codes import decode_connection_code, encode_connection_code, validate_blob
from .session import Answerer, Candidate, Offerer, gather_candidates

__all__ = [
    'decode_connection_code',
    'encode_connection_code',
    'validate_blob',
    'Answerer',
    'Candidate',
    'Offerer',
    'gather_candidates',
]
