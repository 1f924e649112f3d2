"""
Pure helpers for route patterns, edge code and naming. Testable without
Pulumi runtime.

Used by the scanner (static_route_pattern), the compiler
(host_header_injection) and the AWS provisioner (cloudfront_function_code,
origin_domain_from_url, object_key). No Pulumi types; all functions accept
and return plain Python types so they can be unit-tested without a Pulumi
stack.
"""


def static_route_pattern(
    name: str,
    is_dir: bool,
) -> str:
    """
    Return the CDN path pattern for a top-level build output entry.

    Directories match everything below them ("assets/*"); files match
    exactly ("favicon.ico").
    """
    return f"{name}/*" if is_dir else name


def host_header_injection() -> str:
    """
    Return the CloudFront Function statement that preserves the viewer host.

    The server origin receives requests with the origin's host header, so
    the viewer's host is copied into x-forwarded-host before forwarding.
    """
    return 'request.headers["x-forwarded-host"] = request.headers.host;'


def cloudfront_function_code(
    injections: list[str] | tuple[str, ...],
) -> str:
    """
    Wrap injection statements into a viewer-request CloudFront Function.

    Args:
        injections: JavaScript statements operating on ``request``, applied
            in order.

    Returns:
        Source for the ``cloudfront-js-2.0`` runtime.
    """
    body = "\n".join(f"  {line}" for line in injections)
    return (
        "async function handler(event) {\n"
        "  var request = event.request;\n"
        f"{body}\n"
        "  return request;\n"
        "}"
    )


def origin_domain_from_url(
    url: str,
) -> str:
    """
    Return the host part of a Lambda function URL.

    CloudFront custom origins take a bare domain, while function URLs are
    reported as "https://<id>.lambda-url.<region>.on.aws/".
    """
    return url.split("://", 1)[-1].split("/", 1)[0]


def object_key(
    destination: str,
    relative_path: str,
) -> str:
    """
    Build an S3 object key from a copy destination prefix and a file path.

    An empty destination means the bucket root. Path separators are
    normalized to "/".
    """
    relative = relative_path.replace("\\", "/").lstrip("/")
    prefix = destination.strip("/")
    return f"{prefix}/{relative}" if prefix else relative
