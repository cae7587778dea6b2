"""
Packed-JS embed hosts (Filemoon and lookalikes).

One hop on a direct embed URL. The player setup sits inside an
eval(function(p,a,c,k,e,d)...) block; there is no hidden payload, so the
fallback extractor unpacks it and reads ``file:"..."``.
"""
from __future__ import annotations

from ..base import HopChain, HopSpec
from ..runner import register_target


@register_target
class PackedEmbedChain(HopChain):
    id = "packed-embed"
    name = "Packed JS embed"
    rank = 100
    media_types = ("movie", "tv")

    hops = (HopSpec(url_template="{url}"),)

    def accepts(self, ref) -> bool:
        return ref.embed_url is not None and super().accepts(ref)
