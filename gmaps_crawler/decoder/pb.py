"""
Google Maps PB Parameter Codec

Lossless decode/encode of the pb (protobuf-like) parameter used by Google Maps
internal requests, with path addressing so single leaves can be rewritten.

Format: !{field_number}{type}{value}

Types:
  s = string
  i = integer
  d = double (decimal/float)
  b = boolean (0 or 1)
  m = message (nested structure, followed by the number of descendant tokens)
  e = enum
  f = float
  z = base64 blob
  j = unsigned 64 bit integer

A '!' inside a string value is escaped by Google as '*21', so splitting the
raw string on '!' yields exactly one token per field.

Paths name one field per nesting level, e.g. "!2m!3s" is string field 3 inside
message field 2 at the top level.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote


class PbFieldType(Enum):
    """Types of pb fields"""
    STRING = 's'
    INTEGER = 'i'
    DOUBLE = 'd'
    BOOLEAN = 'b'
    MESSAGE = 'm'
    ENUM = 'e'
    FLOAT = 'f'
    BYTES = 'z'
    UINT64 = 'j'
    UNKNOWN = '?'

    @classmethod
    def from_char(cls, char: str) -> 'PbFieldType':
        for t in cls:
            if t.value == char:
                return t
        return cls.UNKNOWN


TOKEN_PATTERN = re.compile(r'^(\d+)([a-zA-Z])(.*)$', re.DOTALL)
PATH_PATTERN = re.compile(r'!(\d+)([a-zA-Z])')


@dataclass
class PbField:
    """
    One decoded field.

    Leaves keep their value text exactly as it appeared so an untouched field
    encodes back byte for byte. Messages keep their children; the descendant
    count is recomputed on encode.
    """
    field_number: int
    type_char: str
    raw_value: str = ""
    children: List['PbField'] = field(default_factory=list)

    @property
    def field_type(self) -> PbFieldType:
        return PbFieldType.from_char(self.type_char)

    @property
    def is_message(self) -> bool:
        return self.type_char == 'm'

    @property
    def value(self) -> Any:
        """Typed value of a leaf"""
        field_type = self.field_type
        raw = self.raw_value
        try:
            if field_type in (PbFieldType.INTEGER, PbFieldType.ENUM, PbFieldType.UINT64):
                return int(raw) if raw else 0
            if field_type in (PbFieldType.DOUBLE, PbFieldType.FLOAT):
                return float(raw) if raw else 0.0
        except ValueError:
            return raw
        if field_type == PbFieldType.BOOLEAN:
            return raw == '1'
        return raw

    def set_value(self, value: Any):
        if isinstance(value, bool):
            self.raw_value = '1' if value else '0'
        else:
            self.raw_value = str(value)

    def count_descendants(self) -> int:
        total = 0
        for child in self.children:
            total += 1
            if child.is_message:
                total += child.count_descendants()
        return total

    def encode(self) -> str:
        if self.is_message:
            inner = ''.join(child.encode() for child in self.children)
            return f"!{self.field_number}m{self.count_descendants()}{inner}"
        return f"!{self.field_number}{self.type_char}{self.raw_value}"

    def find(self, field_number: int, type_char: str) -> Optional['PbField']:
        for child in self.children:
            if child.field_number == field_number and child.type_char == type_char:
                return child
        return None

    def to_dict(self) -> Dict:
        """Convert to dictionary representation"""
        result = {
            'field': self.field_number,
            'type': self.type_char,
            'type_name': self.field_type.name.lower(),
        }
        if self.is_message:
            result['children'] = [child.to_dict() for child in self.children]
        else:
            result['value'] = self.value
        return result


def parse_path(path: str) -> List[Tuple[int, str]]:
    """Split "!2m!3s" into [(2, 'm'), (3, 's')]"""
    segments = [(int(number), type_char) for number, type_char in PATH_PATTERN.findall(path)]
    if not segments:
        raise ValueError(f"Invalid pb path: {path!r}")
    for number, type_char in segments[:-1]:
        if type_char != 'm':
            raise ValueError(f"Only messages can have children, got !{number}{type_char} in {path!r}")
    return segments


class PbTree:
    """Decoded pb parameter, addressable by path"""

    def __init__(self, fields: Optional[List[PbField]] = None):
        self.root = PbField(field_number=0, type_char='m', children=fields or [])

    @property
    def fields(self) -> List[PbField]:
        return self.root.children

    # =========================================================================
    # Codec
    # =========================================================================

    @classmethod
    def decode(cls, pb_string: str) -> 'PbTree':
        """
        Decode a pb parameter string.

        Args:
            pb_string: The pb parameter value (URL encoded or not)

        Returns:
            PbTree holding every field of the input

        Raises:
            ValueError: If a token is not of the form {number}{type}{value}
        """
        if '%21' in pb_string:
            pb_string = unquote(pb_string)

        tokens = pb_string.split('!')
        if tokens and tokens[0] == '':
            tokens = tokens[1:]

        fields, _ = cls._parse_tokens(tokens, 0, len(tokens))
        return cls(fields)

    @classmethod
    def _parse_tokens(cls, tokens: List[str], pos: int, budget: int) -> Tuple[List[PbField], int]:
        """Parse up to `budget` tokens starting at pos, return fields and new pos"""
        fields = []
        end = min(pos + budget, len(tokens))
        while pos < end:
            match = TOKEN_PATTERN.match(tokens[pos])
            if not match:
                raise ValueError(f"Invalid pb token: {tokens[pos]!r}")
            number, type_char, raw = int(match.group(1)), match.group(2), match.group(3)
            pos += 1
            if type_char == 'm':
                declared = int(raw) if raw.isdigit() else 0
                children, pos = cls._parse_tokens(tokens, pos, min(declared, end - pos))
                fields.append(PbField(field_number=number, type_char='m', children=children))
            else:
                fields.append(PbField(field_number=number, type_char=type_char, raw_value=raw))
        return fields, pos

    def encode(self) -> str:
        """Encode back to a pb string with message counts recomputed"""
        return ''.join(f.encode() for f in self.fields)

    # =========================================================================
    # Path access
    # =========================================================================

    def node(self, path: str) -> Optional[PbField]:
        """The field at path, or None"""
        current = self.root
        for number, type_char in parse_path(path):
            current = current.find(number, type_char)
            if current is None:
                return None
        return current

    def get(self, path: str, default: Any = None) -> Any:
        """Typed value of the leaf at path, the field itself for a message"""
        found = self.node(path)
        if found is None:
            return default
        return found if found.is_message else found.value

    def set(self, path: str, value: Any):
        """
        Set the leaf at path, creating missing messages and the leaf.

        New fields are appended after their existing siblings.
        """
        segments = parse_path(path)
        current = self.root
        for number, type_char in segments[:-1]:
            child = current.find(number, type_char)
            if child is None:
                child = PbField(field_number=number, type_char='m')
                current.children.append(child)
            current = child

        number, type_char = segments[-1]
        if type_char == 'm':
            raise ValueError(f"Cannot assign a value to message {path!r}")
        leaf = current.find(number, type_char)
        if leaf is None:
            leaf = PbField(field_number=number, type_char=type_char)
            current.children.append(leaf)
        leaf.set_value(value)

    def to_dict(self) -> List[Dict]:
        return [f.to_dict() for f in self.fields]

    def __str__(self) -> str:
        return self.encode()


def decode_pb(pb_string: str) -> PbTree:
    """Decode a pb parameter string."""
    return PbTree.decode(pb_string)
