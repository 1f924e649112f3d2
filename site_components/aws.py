"""
AWS provisioning for SSR sites: S3 assets bucket, Lambda servers, CloudFront.

``create_bucket`` creates the private assets bucket and the Origin Access
Control CloudFront uses to read it. ``create_servers_and_distribution`` turns
a ``CanonicalPlan`` into resources:

- one Lambda function per compute origin, exposed through a function URL
  (or, for edge plans, published in us-east-1 and attached to behaviors as
  an origin-request Lambda@Edge),
- one CloudFront Function per plan entry, attached on viewer-request,
- one S3 object per file of each storage origin copy spec,
- the distribution, whose default and ordered cache behaviors follow the
  plan's behavior order,
- the bucket policy letting only that distribution read the bucket.

Nothing here decides routing; every decision was made by the plan.
"""

import json
import mimetypes
import os
from dataclasses import dataclass
from typing import Any

import pulumi
import pulumi_aws as aws

from site_components._helpers import (
    cloudfront_function_code,
    object_key,
    origin_domain_from_url,
)
from site_components.plan import (
    CACHE_TYPE_STATIC,
    CanonicalPlan,
    ComputeOrigin,
    StorageOrigin,
)

# Applied when enable_public_access_block is True. Used by tests and callers
# to assert on secure defaults.
S3_BLOCK_PUBLIC_ACCESS: dict[str, bool] = {
    "block_public_acls": True,
    "block_public_policy": True,
    "ignore_public_acls": True,
    "restrict_public_buckets": True,
}

# AWS managed CloudFront policies.
CACHING_OPTIMIZED_POLICY_ID = "658327ea-f89d-4fab-a63d-7e88639e58f6"
CACHING_DISABLED_POLICY_ID = "4135ea2d-6df8-44a3-9df3-4b5a84be39ad"
ALL_VIEWER_EXCEPT_HOST_HEADER_POLICY_ID = "b689b0a8-53d0-40ab-baf2-68738e2966ac"

LAMBDA_BASIC_EXECUTION_POLICY_ARN = (
    "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
)

# Served by the server function in interactive development, where no
# production bundle exists.
PLACEHOLDER_HANDLER = """export const handler = async () => ({
  statusCode: 200,
  headers: { "content-type": "text/plain" },
  body: "This site is running in development mode.",
});
"""


@dataclass
class SiteBucket:
    bucket: aws.s3.Bucket
    access: aws.cloudfront.OriginAccessControl


@dataclass
class SiteServers:
    distribution: aws.cloudfront.Distribution
    functions: dict[str, aws.lambda_.Function]


def create_bucket(
    parent: pulumi.Resource,
    name: str,
    enable_public_access_block: bool = True,
) -> SiteBucket:
    """
    Create the assets bucket and its Origin Access Control.

    Args:
        parent: Component owning the resources.
        name: Resource name prefix.
        enable_public_access_block: If True (default), apply
            S3_BLOCK_PUBLIC_ACCESS so the bucket cannot be made public.
    """
    child_opts = pulumi.ResourceOptions(parent=parent)

    bucket = aws.s3.Bucket(
        resource_name=f"{name}-assets",
        force_destroy=True,
        opts=child_opts,
    )

    if enable_public_access_block:
        aws.s3.BucketPublicAccessBlock(
            resource_name=f"{name}-assets-block-public",
            bucket=bucket.id,
            opts=child_opts,
            **S3_BLOCK_PUBLIC_ACCESS,
        )

    # retain_on_delete=True avoids AWS 409 OriginAccessControlInUse on destroy:
    # AWS may still reference the OAC briefly after the distribution is gone.
    access = aws.cloudfront.OriginAccessControl(
        resource_name=f"{name}-oac",
        origin_access_control_origin_type="s3",
        signing_behavior="always",
        signing_protocol="sigv4",
        opts=pulumi.ResourceOptions(parent=parent, retain_on_delete=True),
    )
    return SiteBucket(bucket=bucket, access=access)


def cache_behavior_settings(
    plan: CanonicalPlan,
    origin: str,
    cache_type: str,
    allowed_methods: tuple[str, ...],
) -> dict[str, Any]:
    """
    Plain CloudFront cache behavior settings for one plan behavior.

    Static behaviors use the managed CachingOptimized policy. Server
    behaviors disable caching and forward every viewer header except Host.
    In edge plans the server runs as Lambda@Edge on top of the storage
    origin, so server behaviors target that origin instead.
    """
    target = origin
    if plan.edge and isinstance(plan.origins[origin], ComputeOrigin):
        target = next(
            name
            for name, candidate in plan.origins.items()
            if isinstance(candidate, StorageOrigin)
        )

    settings: dict[str, Any] = {
        "target_origin_id": target,
        "viewer_protocol_policy": "redirect-to-https",
        "allowed_methods": list(allowed_methods),
        "cached_methods": ["GET", "HEAD"],
        "compress": True,
    }
    if cache_type == CACHE_TYPE_STATIC:
        settings["cache_policy_id"] = CACHING_OPTIMIZED_POLICY_ID
    else:
        settings["cache_policy_id"] = CACHING_DISABLED_POLICY_ID
        settings["origin_request_policy_id"] = ALL_VIEWER_EXCEPT_HOST_HEADER_POLICY_ID
    return settings


def _assume_role_policy(edge: bool) -> str:
    services = ["lambda.amazonaws.com"]
    if edge:
        services.append("edgelambda.amazonaws.com")
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": services},
                    "Action": "sts:AssumeRole",
                }
            ],
        }
    )


def _bucket_policy(args: list[str]) -> str:
    bucket_arn, distribution_arn = args
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": "cloudfront.amazonaws.com"},
                    "Action": "s3:GetObject",
                    "Resource": f"{bucket_arn}/*",
                    "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
                }
            ],
        }
    )


def _upload_assets(
    parent: pulumi.Resource,
    name: str,
    origin_name: str,
    origin: StorageOrigin,
    bucket: aws.s3.Bucket,
    output_root: str,
) -> list[aws.s3.BucketObjectv2]:
    """One BucketObjectv2 per file below each copy source, keyed under its destination."""
    child_opts = pulumi.ResourceOptions(parent=parent)
    objects = []
    for spec in origin.copy:
        source = os.path.join(output_root, spec.source)
        if not os.path.isdir(source):
            pulumi.log.warn(
                f"Skipping upload of {source}: directory not found", resource=parent
            )
            continue

        for dirpath, dirnames, filenames in os.walk(source):
            dirnames.sort()
            for filename in sorted(filenames):
                path = os.path.join(dirpath, filename)
                key = object_key(spec.destination, os.path.relpath(path, source))
                content_type, _ = mimetypes.guess_type(filename)
                objects.append(
                    aws.s3.BucketObjectv2(
                        resource_name=f"{name}-{origin_name}-{key}",
                        bucket=bucket.id,
                        key=key,
                        source=pulumi.FileAsset(path),
                        content_type=content_type or "application/octet-stream",
                        cache_control=spec.cache_control,
                        opts=child_opts,
                    )
                )
    pulumi.log.debug(f"Uploading {len(objects)} files to {origin_name}", resource=parent)
    return objects


def create_servers_and_distribution(
    parent: pulumi.Resource,
    name: str,
    plan: CanonicalPlan,
    site_bucket: SiteBucket,
    output_root: str,
    dev: bool = False,
) -> SiteServers:
    """
    Create every resource the plan describes and return the distribution.

    Args:
        parent: Component owning the resources.
        name: Resource name prefix.
        plan: Validated plan; origin and function names become resource
            names and CloudFront origin ids.
        site_bucket: From create_bucket.
        output_root: Build output root; copy sources are relative to it.
        dev: Deploy a placeholder server bundle instead of the real one.
    """
    child_opts = pulumi.ResourceOptions(parent=parent)
    edge_opts = child_opts
    if plan.edge:
        # Lambda@Edge functions must live in us-east-1.
        edge_provider = aws.Provider(
            resource_name=f"{name}-us-east-1",
            region="us-east-1",
            opts=child_opts,
        )
        edge_opts = pulumi.ResourceOptions(parent=parent, provider=edge_provider)

    functions: dict[str, aws.lambda_.Function] = {}
    origins: list[aws.cloudfront.DistributionOriginArgs] = []
    for origin_name, origin in plan.origins.items():
        if isinstance(origin, StorageOrigin):
            _upload_assets(parent, name, origin_name, origin, site_bucket.bucket, output_root)
            origins.append(
                aws.cloudfront.DistributionOriginArgs(
                    domain_name=site_bucket.bucket.bucket_regional_domain_name,
                    origin_id=origin_name,
                    origin_access_control_id=site_bucket.access.id,
                )
            )
            continue

        server = origin.function
        role = aws.iam.Role(
            resource_name=f"{name}-{origin_name}-role",
            assume_role_policy=_assume_role_policy(plan.edge),
            opts=child_opts,
        )
        aws.iam.RolePolicyAttachment(
            resource_name=f"{name}-{origin_name}-logs",
            role=role.name,
            policy_arn=LAMBDA_BASIC_EXECUTION_POLICY_ARN,
            opts=child_opts,
        )
        code = (
            pulumi.AssetArchive({"index.mjs": pulumi.StringAsset(PLACEHOLDER_HANDLER)})
            if dev
            else pulumi.FileArchive(server.bundle)
        )
        function = aws.lambda_.Function(
            resource_name=f"{name}-{origin_name}",
            description=server.description,
            role=role.arn,
            runtime=server.runtime,
            handler="index.handler" if dev else server.handler,
            code=code,
            memory_size=server.memory_mb,
            timeout=server.timeout_s,
            architectures=[server.architecture],
            publish=plan.edge,
            opts=edge_opts if plan.edge else child_opts,
        )
        functions[origin_name] = function
        if plan.edge:
            continue

        function_url = aws.lambda_.FunctionUrl(
            resource_name=f"{name}-{origin_name}-url",
            function_name=function.name,
            authorization_type="NONE",
            opts=child_opts,
        )
        aws.lambda_.Permission(
            resource_name=f"{name}-{origin_name}-url-invoke",
            action="lambda:InvokeFunctionUrl",
            function=function.name,
            principal="*",
            function_url_auth_type="NONE",
            opts=child_opts,
        )
        origins.append(
            aws.cloudfront.DistributionOriginArgs(
                domain_name=function_url.function_url.apply(origin_domain_from_url),
                origin_id=origin_name,
                custom_origin_config=aws.cloudfront.DistributionOriginCustomOriginConfigArgs(
                    http_port=80,
                    https_port=443,
                    origin_protocol_policy="https-only",
                    origin_ssl_protocols=["TLSv1.2"],
                ),
            )
        )

    cf_functions = {
        cf_name: aws.cloudfront.Function(
            resource_name=f"{name}-{cf_name}",
            runtime="cloudfront-js-2.0",
            code=cloudfront_function_code(cf_function.injections),
            publish=True,
            opts=child_opts,
        )
        for cf_name, cf_function in plan.cloudfront_functions.items()
    }

    default_cache_behavior = None
    ordered_cache_behaviors = []
    for behavior in plan.behaviors:
        settings = cache_behavior_settings(
            plan, behavior.origin, behavior.cache_type, behavior.allowed_methods
        )
        if behavior.pattern is None:
            if behavior.cf_function:
                settings["function_associations"] = [
                    aws.cloudfront.DistributionDefaultCacheBehaviorFunctionAssociationArgs(
                        event_type="viewer-request",
                        function_arn=cf_functions[behavior.cf_function].arn,
                    )
                ]
            if behavior.origin in functions and plan.edge:
                settings["lambda_function_associations"] = [
                    aws.cloudfront.DistributionDefaultCacheBehaviorLambdaFunctionAssociationArgs(
                        event_type="origin-request",
                        lambda_arn=functions[behavior.origin].qualified_arn,
                        include_body=True,
                    )
                ]
            default_cache_behavior = aws.cloudfront.DistributionDefaultCacheBehaviorArgs(
                **settings
            )
            continue

        if behavior.cf_function:
            settings["function_associations"] = [
                aws.cloudfront.DistributionOrderedCacheBehaviorFunctionAssociationArgs(
                    event_type="viewer-request",
                    function_arn=cf_functions[behavior.cf_function].arn,
                )
            ]
        if behavior.origin in functions and plan.edge:
            settings["lambda_function_associations"] = [
                aws.cloudfront.DistributionOrderedCacheBehaviorLambdaFunctionAssociationArgs(
                    event_type="origin-request",
                    lambda_arn=functions[behavior.origin].qualified_arn,
                    include_body=True,
                )
            ]
        ordered_cache_behaviors.append(
            aws.cloudfront.DistributionOrderedCacheBehaviorArgs(
                path_pattern=behavior.pattern, **settings
            )
        )

    # Explicit depends_on so destroy order is correct: distribution is deleted
    # before the OAC (AWS returns 409 OriginAccessControlInUse otherwise).
    distribution = aws.cloudfront.Distribution(
        resource_name=f"{name}-cdn",
        enabled=True,
        origins=origins,
        default_cache_behavior=default_cache_behavior,
        ordered_cache_behaviors=ordered_cache_behaviors,
        restrictions=aws.cloudfront.DistributionRestrictionsArgs(
            geo_restriction=aws.cloudfront.DistributionRestrictionsGeoRestrictionArgs(
                restriction_type="none",
            ),
        ),
        viewer_certificate=aws.cloudfront.DistributionViewerCertificateArgs(
            cloudfront_default_certificate=True,
        ),
        opts=pulumi.ResourceOptions(parent=parent, depends_on=[site_bucket.access]),
    )

    aws.s3.BucketPolicy(
        resource_name=f"{name}-assets-policy",
        bucket=site_bucket.bucket.id,
        policy=pulumi.Output.all(site_bucket.bucket.arn, distribution.arn).apply(
            _bucket_policy
        ),
        opts=child_opts,
    )

    return SiteServers(distribution=distribution, functions=functions)
