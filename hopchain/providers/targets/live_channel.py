"""
Live channels via the player's server lookup.

The player page asks ``server_lookup.js?channel_id=premium<N>`` which CDN
server currently carries the channel; the playlist URL is then built from
that server key. The CDN only answers with the player domain as Referer,
which is what the lookup hop leaves behind as the replay origin.
"""
from __future__ import annotations
from typing import Optional

from ..base import ExtractionRule, HopChain, HopSpec, ResolutionContext
from ..runner import register_target

CDN_HOST = "giokko.ru"


def _lookup_hop(domain: str) -> HopSpec:
    return HopSpec(
        url_template=f"https://{domain}/server_lookup.js?channel_id={{channel_key}}",
        rules=(
            # plain server names, plus the shared "top1/cdn" pool
            ExtractionRule(pattern=r"[\"']server_key[\"']\s*:\s*[\"']([A-Za-z0-9_\-]+(?:/cdn)?)[\"']",
                           name="server_key"),
        ),
        headers=(("Referer", f"https://{domain}/"), ("Origin", f"https://{domain}")),
    )


@register_target
class ServerLookupChain(HopChain):
    id = "dlhd"
    name = "DLHD live (epicplayplay)"
    rank = 250
    media_types = ("live",)
    hops = (_lookup_hop("epicplayplay.cfd"),)

    def accepts(self, ref) -> bool:
        return ref.channel_key is not None

    def compose(self, ctx: ResolutionContext) -> Optional[str]:
        server_key, channel_key = ctx.token, ctx.ref.channel_key
        if server_key == "top1/cdn":
            return f"https://top1.{CDN_HOST}/top1/cdn/{channel_key}/mono.css"
        return f"https://{server_key}new.{CDN_HOST}/{server_key}/{channel_key}/mono.css"


@register_target
class ServerLookupMirrorChain(ServerLookupChain):
    id = "dlhd-mirror"
    name = "DLHD live (daddyhd)"
    rank = 240
    hops = (_lookup_hop("daddyhd.com"),)
