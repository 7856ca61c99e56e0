"""
Decoder module for Google Maps request parameters.

- pb.py: Decodes, edits and re-encodes Google's protobuf-like "pb" URL parameter
"""

from .pb import PbTree, PbField, PbFieldType, decode_pb, parse_path
