"""
Server-rendered site: build metadata → plan → AWS resources.

``SsrSite`` is the shared ComponentResource behind every framework adapter
(see ``site_components.nuxt``). On each evaluation it:

1. creates the assets bucket,
2. gets the build metadata from the session cache (scanning the build
   output at most once per session, or using the development placeholder),
3. compiles and validates the deployment plan for the adapter's layout,
4. hands the canonical plan to the AWS provisioner.

The site path is expected to hold a finished framework build; running the
build is up to the caller.
"""

import os

import pulumi

from site_components.aws import create_bucket, create_servers_and_distribution
from site_components.build_cache import BuildMetadataCache
from site_components.build_output import (
    PlaceholderMetadataSource,
    select_metadata_source,
)
from site_components.plan import (
    NUXT_LAYOUT,
    SERVER_ORIGIN,
    FrameworkLayout,
    PlanDefaults,
    compile_plan,
    validate_plan,
)


class SsrSite(pulumi.ComponentResource):
    """
    S3 assets + Lambda server behind one CloudFront distribution.

    Subclasses set ``layout`` and ``type_token``.
    """

    layout: FrameworkLayout = NUXT_LAYOUT
    type_token: str = "ssrsite:aws:SsrSite"

    def __init__(
        self,
        name: str,
        path: str = ".",
        dev: bool = False,
        cache: BuildMetadataCache | None = None,
        defaults: PlanDefaults | None = None,
        enable_public_access_block: bool = True,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Plan and provision the site.

        Args:
            name: Pulumi resource name; also the build metadata cache key.
            path: Directory of the built app (the build output root).
            dev: Interactive development: placeholder metadata and server.
            cache: Session cache shared by all sites of this program run. A
                private one is created if omitted.
            defaults: Function and cache header defaults for the plan.
            enable_public_access_block: Block public access on the bucket.

        Raises:
            BuildOutputMissing: path holds no build output (not in dev).
            PlanInvalid: the compiled plan is inconsistent.
            ValueError: cache loads placeholder metadata but dev is off, or
                the other way round.

        Outputs (set on self, registered for the component):
            url: HTTPS URL of the distribution.
            metadata: mode ("placeholder" or "deployed"), path, url and
                server function ARN.
        """
        super().__init__(self.type_token, name, None, opts)

        if cache is None:
            cache = BuildMetadataCache(select_metadata_source(dev))
        elif isinstance(cache.source, PlaceholderMetadataSource) != bool(dev):
            raise ValueError(
                f"{name}: dev={dev} does not match the cache's "
                f"{type(cache.source).__name__}"
            )

        output_root = os.path.abspath(path)
        site_bucket = create_bucket(self, name, enable_public_access_block)

        build_meta = cache.get(f"{name}BuildOutput", output_root, self.layout.assets_path)
        plan = validate_plan(
            compile_plan(output_root, build_meta, self.layout),
            defaults,
        )
        pulumi.log.info(
            f"{self.layout.name} site planned with {len(plan.behaviors)} behaviors",
            resource=self,
        )

        servers = create_servers_and_distribution(
            self, name, plan, site_bucket, output_root, dev=dev
        )

        self.plan = plan
        self.bucket = site_bucket.bucket
        self.distribution = servers.distribution
        self.server = servers.functions[SERVER_ORIGIN]
        self.url: pulumi.Output[str] = pulumi.Output.concat(
            "https://", self.distribution.domain_name
        )
        self.metadata: pulumi.Output[dict] = pulumi.Output.all(
            url=self.url, server=self.server.arn
        ).apply(
            lambda resolved: {
                "mode": "placeholder" if dev else "deployed",
                "path": path,
                "url": resolved["url"],
                "server": resolved["server"],
            }
        )
        self.register_outputs({"url": self.url, "metadata": self.metadata})
