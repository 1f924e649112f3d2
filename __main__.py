"""
SSR site deployment - Pulumi entrypoint.

Builds one server-rendered site from stack config:

- The metadata source is chosen once for this run: the development
  placeholder when ``dev`` is set, otherwise a scan of the build output.
- A single ``BuildMetadataCache`` is shared by every site of the run, so each
  build output is scanned at most once no matter how often it is evaluated.
- The framework adapter (Nuxt, SolidStart) compiles and validates the plan
  and provisions the S3 bucket, Lambda server and CloudFront distribution.

Stack exports: url, server_function_arn, assets_bucket, mode.
"""

import pulumi

from config import StackConfig
from site_components import (
    ADAPTERS,
    BuildMetadataCache,
    PlanDefaults,
    select_metadata_source,
)


def _plan_defaults(config: StackConfig) -> PlanDefaults:
    overrides = {
        key: value
        for key, value in [
            ("memory_mb", config.server_memory_mb),
            ("timeout_s", config.server_timeout_s),
        ]
        if value is not None
    }
    return PlanDefaults(**overrides)


def main():
    """
    Build the configured site and export its outputs.

    Reads config (site_name, site_path, framework, dev), builds the session
    cache for the selected metadata source, instantiates the framework adapter
    and exports the distribution URL and server function ARN.
    """
    config = StackConfig.from_pulumi_config(pulumi.Config())

    cache = BuildMetadataCache(select_metadata_source(config.dev))

    site = ADAPTERS[config.framework](
        name=config.site_name,
        path=config.site_path,
        dev=config.dev,
        cache=cache,
        defaults=_plan_defaults(config),
        enable_public_access_block=config.enable_public_access_block,
    )

    for output_name, value in [
        ("url", site.url),
        ("server_function_arn", site.server.arn),
        ("assets_bucket", site.bucket.id),
        ("mode", "placeholder" if config.dev else "deployed"),
    ]:
        pulumi.export(output_name, value)


if __name__ == "__main__":
    main()
