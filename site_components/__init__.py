"""
Server-rendered site components.

A site is planned before it is provisioned. The pipeline, leaves first:

- **build_output**: scans a framework build for its static top-level paths
  (``BuildMetadata``), or substitutes a placeholder in development.
- **build_cache**: keeps that metadata per site for the whole program run so
  re-evaluation never rescans.
- **plan**: compiles metadata into origins and ordered CloudFront behaviors,
  then validates and fills defaults (``CanonicalPlan``).
- **aws**: creates the bucket, server functions and distribution a plan
  describes.

Use ``Nuxt`` or ``SolidStart`` from the Pulumi entrypoint (e.g. __main__.py).
"""

from site_components.build_cache import BuildMetadataCache
from site_components.build_output import (
    BuildMetadata,
    BuildOutputMissing,
    select_metadata_source,
)
from site_components.nuxt import ADAPTERS, Nuxt, SolidStart
from site_components.plan import PlanDefaults, PlanInvalid
from site_components.ssr_site import SsrSite

__all__ = [
    "ADAPTERS",
    "BuildMetadata",
    "BuildMetadataCache",
    "BuildOutputMissing",
    "Nuxt",
    "PlanDefaults",
    "PlanInvalid",
    "SolidStart",
    "SsrSite",
    "select_metadata_source",
]
