"""
Dean Edwards p,a,c,k,e,d unpacker.

Embed hosts often ship their player setup as
  eval(function(p,a,c,k,e,d){...}('payload',radix,count,'sym|tab'.split('|'),0,{}))
Unpacking is pure string substitution, so the fallback extractor can look
for playlist URLs in player code without running it.
"""
from __future__ import annotations
import re
from typing import Iterator

_PACKED_RE = re.compile(
    r"eval\(\s*function\s*\(\s*p\s*,\s*a\s*,\s*c\s*,\s*k\s*,\s*e\s*,\s*[dr]\s*\)\s*\{.*?\}\s*"
    r"\(\s*(?P<q>['\"])(?P<payload>.*?)(?P=q)\s*,\s*(?P<radix>\d+)\s*,\s*(?P<count>\d+)\s*,\s*"
    r"(?P<q2>['\"])(?P<symtab>.*?)(?P=q2)\.split\(\s*['\"]\|['\"]\s*\)",
    re.DOTALL,
)
_WORD_RE = re.compile(r"\b\w+\b")
_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
_MAX_WORD = 8   # symbol tables never outgrow 62 ** 8 entries


def detect(text: str) -> bool:
    """Check if text contains packed JS."""
    return bool(_PACKED_RE.search(text))


def _decode_word(word: str, radix: int) -> int:
    if 2 <= radix <= 36:
        return int(word, radix)
    if not 36 < radix <= 62:
        raise ValueError(f"unsupported radix {radix}")
    val = 0
    for ch in word:
        digit = _ALPHABET.index(ch)     # ValueError on "_" and friends
        if digit >= radix:
            raise ValueError(f"digit {ch!r} out of range for radix {radix}")
        val = val * radix + digit
    return val


def _unpack_match(match: re.Match) -> str:
    payload = match.group("payload").replace("\\'", "'").replace('\\"', '"')
    radix = match.group("radix")
    if len(radix) > 2:
        # no real packer emits a radix above 62
        return payload
    radix = int(radix)
    # count is advisory; lookups past the table keep the original word
    symtab = match.group("symtab").split("|")

    def _replace(m: re.Match) -> str:
        word = m.group(0)
        if len(word) > _MAX_WORD:
            return word
        try:
            idx = _decode_word(word, radix)
        except ValueError:
            return word
        return symtab[idx] if idx < len(symtab) and symtab[idx] else word

    return _WORD_RE.sub(_replace, payload)


def iter_unpacked(text: str) -> Iterator[str]:
    for match in _PACKED_RE.finditer(text):
        yield _unpack_match(match)


def unpack(text: str) -> str:
    """Unpack the first packed block. Returns the original text when none is found."""
    match = _PACKED_RE.search(text)
    if not match:
        return text
    return _unpack_match(match)
