"""
Framework adapters for Nitro builds (``.output/public`` + ``.output/server``).
"""

from site_components.plan import NUXT_LAYOUT, SOLID_START_LAYOUT
from site_components.ssr_site import SsrSite


class Nuxt(SsrSite):
    """Deploys a built Nuxt app."""

    layout = NUXT_LAYOUT
    type_token = "ssrsite:aws:Nuxt"


class SolidStart(SsrSite):
    """Deploys a built SolidStart app."""

    layout = SOLID_START_LAYOUT
    type_token = "ssrsite:aws:SolidStart"


ADAPTERS: dict[str, type[SsrSite]] = {
    "nuxt": Nuxt,
    "solid-start": SolidStart,
}
