"""Tests for the site components, run against Pulumi mocks"""

import tempfile
from pathlib import Path

import pulumi
import pytest

from site_components.build_cache import BuildMetadataCache
from site_components.build_output import (
    NITRO_ASSETS_PATH,
    BuildOutputMissing,
    PlaceholderMetadataSource,
    ScannedMetadataSource,
)
from site_components.nuxt import Nuxt, SolidStart

CLOUDFRONT_DOMAIN = "d111111abcdef8.cloudfront.net"


class SiteMocks(pulumi.runtime.Mocks):
    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        outputs = dict(args.inputs)
        if args.typ == "aws:cloudfront/distribution:Distribution":
            outputs["domainName"] = CLOUDFRONT_DOMAIN
            outputs["arn"] = "arn:aws:cloudfront::123456789012:distribution/E2EXAMPLE"
        elif args.typ == "aws:lambda/functionUrl:FunctionUrl":
            outputs["functionUrl"] = "https://abc123.lambda-url.us-east-1.on.aws/"
        elif args.typ == "aws:lambda/function:Function":
            outputs["arn"] = f"arn:aws:lambda:us-east-1:123456789012:function:{args.name}"
            outputs["name"] = args.name
        elif args.typ == "aws:s3/bucket:Bucket":
            outputs["arn"] = f"arn:aws:s3:::{args.name}"
            outputs["bucketRegionalDomainName"] = f"{args.name}.s3.us-east-1.amazonaws.com"
        elif args.typ == "aws:iam/role:Role":
            outputs["arn"] = f"arn:aws:iam::123456789012:role/{args.name}"
            outputs["name"] = args.name
        return [f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        return {}


pulumi.runtime.set_mocks(SiteMocks(), preview=False)


def make_build():
    root = Path(tempfile.mkdtemp())
    assets = root / NITRO_ASSETS_PATH
    assets.mkdir(parents=True)
    (assets / "index.html").write_text("<html></html>")
    (assets / "images").mkdir()
    (assets / "images" / "logo.svg").write_text("<svg/>")
    server = root / ".output" / "server"
    server.mkdir(parents=True)
    (server / "index.mjs").write_text("export const handler = () => {};")
    return root


class TestNuxt:
    @pulumi.runtime.test
    def test_url(self):
        site = Nuxt("Web", path=str(make_build()))

        def check(url):
            assert url == f"https://{CLOUDFRONT_DOMAIN}"

        return site.url.apply(check)

    @pulumi.runtime.test
    def test_plan_from_build(self):
        site = Nuxt("Plan", path=str(make_build()))
        assert [b.pattern for b in site.plan.behaviors] == [
            None,
            "_server/",
            "index.html",
            "images/*",
        ]

    @pulumi.runtime.test
    def test_uses_shared_cache(self):
        cache = BuildMetadataCache(ScannedMetadataSource())
        Nuxt("Cached", path=str(make_build()), cache=cache)
        assert "CachedBuildOutput" in cache.store

    @pulumi.runtime.test
    def test_deployed_metadata(self):
        site = Nuxt("Meta", path=str(make_build()))

        def check(metadata):
            assert metadata["mode"] == "deployed"
            assert metadata["server"].endswith(":function:Meta-server")

        return site.metadata.apply(check)

    @pulumi.runtime.test
    def test_missing_build(self):
        with pytest.raises(BuildOutputMissing):
            Nuxt("Missing", path=tempfile.mkdtemp())


class TestDevelopmentMode:
    @pulumi.runtime.test
    def test_placeholder_without_build(self):
        site = Nuxt("Dev", path=str(Path(tempfile.mkdtemp()) / "not-built"), dev=True)
        assert [b.pattern for b in site.plan.behaviors][2:] == [
            "_build/*",
            "_server/*",
            "assets/*",
            "favicon.ico",
        ]

        def check(metadata):
            assert metadata["mode"] == "placeholder"

        return site.metadata.apply(check)

    @pulumi.runtime.test
    def test_placeholder_cache_without_dev(self):
        cache = BuildMetadataCache(PlaceholderMetadataSource())
        with pytest.raises(ValueError, match="dev=False"):
            Nuxt("DevCache", path=str(make_build()), cache=cache)

    @pulumi.runtime.test
    def test_scanning_cache_in_dev(self):
        cache = BuildMetadataCache(ScannedMetadataSource())
        with pytest.raises(ValueError, match="dev=True"):
            Nuxt("ScanCache", path=str(make_build()), dev=True, cache=cache)

    @pulumi.runtime.test
    def test_shared_placeholder_cache(self):
        cache = BuildMetadataCache(PlaceholderMetadataSource())
        site = Nuxt("DevShared", path=str(make_build()), dev=True, cache=cache)
        assert "favicon.ico" in [b.pattern for b in site.plan.behaviors]


class TestSolidStart:
    @pulumi.runtime.test
    def test_description(self):
        site = SolidStart("Solid", path=str(make_build()))
        server = site.plan.origins["server"].function
        assert server.description == "Server handler for SolidStart"
