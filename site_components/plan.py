"""
Deployment plans: what a site looks like before any cloud resource exists.

A plan lists the origins a site is served from (a server function or the
assets bucket), the CloudFront Functions injected in front of them, and the
ordered cache behaviors routing URL patterns to origins. The first behavior
whose pattern matches wins; the one behavior without a pattern is the
distribution's default and must go to the server.

``compile_plan`` builds a plan from build metadata for a framework layout.
``validate_plan`` checks cross references, fills defaults and returns the
``CanonicalPlan`` handed to the provisioner (``site_components.aws``).
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any

from site_components._helpers import host_header_injection
from site_components.build_output import NITRO_ASSETS_PATH, BuildMetadata

SERVER_ORIGIN = "server"
ASSETS_ORIGIN = "s3"
SERVER_CF_FUNCTION = "serverCfFunction"

CACHE_TYPE_SERVER = "server"
CACHE_TYPE_STATIC = "static"
CACHE_TYPES = (CACHE_TYPE_SERVER, CACHE_TYPE_STATIC)

ALL_METHODS: tuple[str, ...] = (
    "DELETE",
    "GET",
    "HEAD",
    "OPTIONS",
    "PATCH",
    "POST",
    "PUT",
)
READ_METHODS: tuple[str, ...] = ("GET", "HEAD", "OPTIONS")


class PlanInvalid(Exception):
    """A plan breaks a structural rule. ``violations`` lists every one found."""

    def __init__(self, violations: list[str]):
        self.violations = violations
        super().__init__("Invalid deployment plan: " + "; ".join(violations))


@dataclass(frozen=True)
class FrameworkLayout:
    """
    Where a framework puts things in its build output.

    Attributes:
        name: Display name, used in function descriptions.
        assets_path: Public files directory relative to the output root.
        server_path: Server bundle directory relative to the output root.
        handler: Entry point inside the server bundle.
        internal_prefix: Framework-internal route prefix that must reach the
            server even if a static entry shares its name.
    """

    name: str
    assets_path: str = NITRO_ASSETS_PATH
    server_path: str = os.path.join(".output", "server")
    handler: str = "index.handler"
    internal_prefix: str = "_server/"


NUXT_LAYOUT = FrameworkLayout(name="Nuxt")
SOLID_START_LAYOUT = FrameworkLayout(name="SolidStart")


@dataclass(frozen=True)
class CloudFrontFunction:
    injections: tuple[str, ...]


@dataclass(frozen=True)
class ServerFunction:
    description: str
    handler: str
    bundle: str
    memory_mb: int | None = None
    timeout_s: int | None = None
    runtime: str | None = None
    architecture: str | None = None


@dataclass(frozen=True)
class ComputeOrigin:
    function: ServerFunction


@dataclass(frozen=True)
class CopySpec:
    """
    A directory of the build output synced into the assets bucket.

    ``cached`` files have content-hashed names and get a long-lived cache
    header; the rest are revalidated at the edge.
    """

    source: str
    destination: str
    cached: bool
    cache_control: str | None = None


@dataclass(frozen=True)
class StorageOrigin:
    copy: tuple[CopySpec, ...]


Origin = ComputeOrigin | StorageOrigin


@dataclass(frozen=True)
class Behavior:
    cache_type: str
    origin: str
    pattern: str | None = None
    cf_function: str | None = None
    allowed_methods: tuple[str, ...] | None = None


@dataclass(frozen=True)
class DeploymentPlan:
    edge: bool
    cloudfront_functions: dict[str, CloudFrontFunction]
    origins: dict[str, Origin]
    behaviors: tuple[Behavior, ...]

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the key names used across site adapters."""
        return {
            "edge": self.edge,
            "cloudFrontFunctions": {
                name: {"injections": list(fn.injections)}
                for name, fn in self.cloudfront_functions.items()
            },
            "origins": {
                name: _origin_to_dict(origin) for name, origin in self.origins.items()
            },
            "behaviors": [_behavior_to_dict(b) for b in self.behaviors],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentPlan":
        """
        Parse a raw plan mapping.

        Raises:
            PlanInvalid: listing every malformed entry, e.g. an origin that
                is both (or neither) a server and an s3 origin, or a behavior
                without an origin.
        """
        origins: dict[str, Origin] = {}
        behaviors: list[Behavior] = []
        violations = []
        for name, raw in data.get("origins", {}).items():
            try:
                origins[name] = _origin_from_dict(name, raw)
            except PlanInvalid as e:
                violations.extend(e.violations)
        for index, raw in enumerate(data.get("behaviors", [])):
            try:
                behaviors.append(_behavior_from_dict(index, raw))
            except PlanInvalid as e:
                violations.extend(e.violations)
        if violations:
            raise PlanInvalid(violations)

        return cls(
            edge=bool(data.get("edge", False)),
            cloudfront_functions={
                name: CloudFrontFunction(injections=tuple(raw.get("injections", [])))
                for name, raw in data.get("cloudFrontFunctions", {}).items()
            },
            origins=origins,
            behaviors=tuple(behaviors),
        )


@dataclass(frozen=True)
class CanonicalPlan(DeploymentPlan):
    """A validated plan with every optional field set."""


@dataclass(frozen=True)
class PlanDefaults:
    """Values ``validate_plan`` fills into unset optional plan fields."""

    memory_mb: int = 1024
    timeout_s: int = 20
    runtime: str = "nodejs20.x"
    architecture: str = "x86_64"
    versioned_files_cache_header: str = "public,max-age=31536000,immutable"
    non_versioned_files_cache_header: str = (
        "public,max-age=0,s-maxage=86400,stale-while-revalidate=8640"
    )
    methods_by_cache_type: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: {
            CACHE_TYPE_SERVER: ALL_METHODS,
            CACHE_TYPE_STATIC: READ_METHODS,
        }
    )


def _origin_to_dict(origin: Origin) -> dict[str, Any]:
    if isinstance(origin, ComputeOrigin):
        fn = origin.function
        function: dict[str, Any] = {
            "description": fn.description,
            "handler": fn.handler,
            "bundle": fn.bundle,
        }
        for key, value in (
            ("memory", fn.memory_mb),
            ("timeout", fn.timeout_s),
            ("runtime", fn.runtime),
            ("architecture", fn.architecture),
        ):
            if value is not None:
                function[key] = value
        return {"server": {"function": function}}

    copy = []
    for spec in origin.copy:
        item: dict[str, Any] = {
            "from": spec.source,
            "to": spec.destination,
            "cached": spec.cached,
        }
        if spec.cache_control is not None:
            item["cacheControl"] = spec.cache_control
        copy.append(item)
    return {"s3": {"copy": copy}}


def _missing(raw: Any, keys: tuple[str, ...]) -> list[str]:
    if not isinstance(raw, dict):
        return list(keys)
    return [key for key in keys if key not in raw]


def _origin_from_dict(name: str, raw: dict[str, Any]) -> Origin:
    if not isinstance(raw, dict):
        raise PlanInvalid([f"origin {name!r} is not a mapping"])
    shapes = [key for key in ("server", "s3") if key in raw]
    if len(shapes) != 1:
        raise PlanInvalid(
            [f"origin {name!r} must have exactly one of 'server' or 's3', got {sorted(raw)}"]
        )

    if shapes[0] == "server":
        fn = raw["server"].get("function") if isinstance(raw["server"], dict) else None
        if fn is None:
            raise PlanInvalid([f"origin {name!r} has no server function"])
        missing = _missing(fn, ("description", "handler", "bundle"))
        if missing:
            raise PlanInvalid(
                [f"origin {name!r} server function has no {', '.join(missing)}"]
            )
        return ComputeOrigin(
            function=ServerFunction(
                description=fn["description"],
                handler=fn["handler"],
                bundle=fn["bundle"],
                memory_mb=fn.get("memory"),
                timeout_s=fn.get("timeout"),
                runtime=fn.get("runtime"),
                architecture=fn.get("architecture"),
            )
        )

    copy = raw["s3"].get("copy") if isinstance(raw["s3"], dict) else None
    if not isinstance(copy, list):
        raise PlanInvalid([f"origin {name!r} has no s3 copy list"])
    violations = []
    for index, item in enumerate(copy):
        missing = _missing(item, ("from", "to", "cached"))
        if missing:
            violations.append(f"origin {name!r} copy {index} has no {', '.join(missing)}")
    if violations:
        raise PlanInvalid(violations)

    return StorageOrigin(
        copy=tuple(
            CopySpec(
                source=item["from"],
                destination=item["to"],
                cached=bool(item["cached"]),
                cache_control=item.get("cacheControl"),
            )
            for item in copy
        )
    )


def _behavior_from_dict(index: int, raw: dict[str, Any]) -> Behavior:
    missing = _missing(raw, ("cacheType", "origin"))
    if missing:
        raise PlanInvalid([f"behavior {index} has no {', '.join(missing)}"])
    return Behavior(
        cache_type=raw["cacheType"],
        origin=raw["origin"],
        pattern=raw.get("pattern"),
        cf_function=raw.get("cfFunction"),
        allowed_methods=(
            tuple(raw["allowedMethods"]) if "allowedMethods" in raw else None
        ),
    )


def _behavior_to_dict(behavior: Behavior) -> dict[str, Any]:
    item: dict[str, Any] = {}
    if behavior.pattern is not None:
        item["pattern"] = behavior.pattern
    item["cacheType"] = behavior.cache_type
    if behavior.cf_function is not None:
        item["cfFunction"] = behavior.cf_function
    item["origin"] = behavior.origin
    if behavior.allowed_methods is not None:
        item["allowedMethods"] = list(behavior.allowed_methods)
    return item


def compile_plan(
    output_root: str | os.PathLike,
    metadata: BuildMetadata,
    layout: FrameworkLayout = NUXT_LAYOUT,
) -> DeploymentPlan:
    """
    Compile build metadata into a deployment plan.

    Behaviors come out as: the default (server), the framework's internal
    prefix (server), then one static behavior per route in metadata order.
    An empty route list is fine; the site is then served entirely by the
    server.
    """
    server = ComputeOrigin(
        function=ServerFunction(
            description=f"Server handler for {layout.name}",
            handler=layout.handler,
            bundle=os.path.join(os.fspath(output_root), layout.server_path),
        )
    )
    assets = StorageOrigin(
        copy=(CopySpec(source=metadata.assets_path, destination="", cached=True),)
    )

    server_behavior = Behavior(
        cache_type=CACHE_TYPE_SERVER,
        origin=SERVER_ORIGIN,
        cf_function=SERVER_CF_FUNCTION,
    )
    behaviors = (
        server_behavior,
        replace(server_behavior, pattern=layout.internal_prefix),
        *(
            Behavior(cache_type=CACHE_TYPE_STATIC, origin=ASSETS_ORIGIN, pattern=route)
            for route in metadata.static_routes
        ),
    )

    return DeploymentPlan(
        edge=False,
        cloudfront_functions={
            SERVER_CF_FUNCTION: CloudFrontFunction(injections=(host_header_injection(),))
        },
        origins={SERVER_ORIGIN: server, ASSETS_ORIGIN: assets},
        behaviors=behaviors,
    )


def _plan_violations(plan: DeploymentPlan) -> list[str]:
    violations = []

    for name, origin in plan.origins.items():
        if not isinstance(origin, (ComputeOrigin, StorageOrigin)):
            violations.append(
                f"origin {name!r} is neither a compute nor a storage origin"
            )

    defaults = [b for b in plan.behaviors if b.pattern is None]
    if len(defaults) != 1:
        violations.append(
            f"expected exactly one behavior without a pattern, found {len(defaults)}"
        )
    for behavior in defaults:
        if behavior.origin in plan.origins and not isinstance(
            plan.origins[behavior.origin], ComputeOrigin
        ):
            violations.append(
                f"default behavior routes to {behavior.origin!r}, "
                "which is not a compute origin"
            )

    seen: set[str] = set()
    for index, behavior in enumerate(plan.behaviors):
        label = behavior.pattern if behavior.pattern is not None else "<default>"
        if behavior.cache_type not in CACHE_TYPES:
            violations.append(
                f"behavior {index} ({label}) has unknown cache type {behavior.cache_type!r}"
            )
        if behavior.origin not in plan.origins:
            violations.append(
                f"behavior {index} ({label}) references unknown origin {behavior.origin!r}"
            )
        if (
            behavior.cf_function is not None
            and behavior.cf_function not in plan.cloudfront_functions
        ):
            violations.append(
                f"behavior {index} ({label}) references unknown "
                f"CloudFront function {behavior.cf_function!r}"
            )
        if behavior.pattern is not None:
            if behavior.pattern in seen:
                violations.append(f"pattern {behavior.pattern!r} is routed more than once")
            seen.add(behavior.pattern)

    if plan.edge and not any(
        isinstance(origin, StorageOrigin) for origin in plan.origins.values()
    ):
        violations.append("edge plans need a storage origin to attach server functions to")

    return violations


def _unset_or(value: Any, default: Any) -> Any:
    return default if value is None else value


def _fill_origin(origin: Origin, defaults: PlanDefaults) -> Origin:
    if isinstance(origin, ComputeOrigin):
        fn = origin.function
        return ComputeOrigin(
            function=replace(
                fn,
                memory_mb=_unset_or(fn.memory_mb, defaults.memory_mb),
                timeout_s=_unset_or(fn.timeout_s, defaults.timeout_s),
                runtime=_unset_or(fn.runtime, defaults.runtime),
                architecture=_unset_or(fn.architecture, defaults.architecture),
            )
        )

    return StorageOrigin(
        copy=tuple(
            replace(
                spec,
                cache_control=_unset_or(
                    spec.cache_control,
                    defaults.versioned_files_cache_header
                    if spec.cached
                    else defaults.non_versioned_files_cache_header,
                ),
            )
            for spec in origin.copy
        )
    )


def validate_plan(
    plan: DeploymentPlan,
    defaults: PlanDefaults | None = None,
) -> CanonicalPlan:
    """
    Check a plan and return it with all defaults applied.

    Raises:
        PlanInvalid: listing every violated rule (duplicate or missing
            default behavior, default not on a compute origin, unknown
            origin or CloudFront function, unknown cache type, repeated
            pattern, unknown origin shape, edge plan without storage origin).
    """
    violations = _plan_violations(plan)
    if violations:
        raise PlanInvalid(violations)
    if defaults is None:
        defaults = PlanDefaults()

    return CanonicalPlan(
        edge=plan.edge,
        cloudfront_functions=dict(plan.cloudfront_functions),
        origins={
            name: _fill_origin(origin, defaults) for name, origin in plan.origins.items()
        },
        behaviors=tuple(
            replace(
                behavior,
                allowed_methods=_unset_or(
                    behavior.allowed_methods,
                    defaults.methods_by_cache_type.get(behavior.cache_type, READ_METHODS),
                ),
            )
            for behavior in plan.behaviors
        ),
    )
