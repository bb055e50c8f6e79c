"""
CLI utility to download a backend's API document for offline use.

The server fetches every backend document at startup. Pointing a service at
a local copy instead (``local_path`` in aap-mcp.yaml) pins the tool catalog
and lets the server start without the backends being reachable. This script
produces such a copy: it downloads the document, upgrades Swagger 2.0 to
OpenAPI 3 the same way the server does, and writes the result as JSON.

Usage examples:

    # Controller schema from the default public location
    python -m scripts.fetch_schema --service controller --output data/controller-schema.json

    # EDA schema from a platform instance (default location under the base URL)
    python -m scripts.fetch_schema --service eda --base-url https://aap.example.com \\
      --output data/eda-schema.json

    # Explicit URL, self-signed certificate
    python -m scripts.fetch_schema --service galaxy --url https://hub.lab/api/galaxy/v3/openapi.json \\
      --insecure --output data/galaxy-schema.json

The written file is then referenced from the configuration:

    services:
      - name: controller
        local_path: data/controller-schema.json
"""

import argparse
import json
import sys
from pathlib import Path

import httpx

from aap_mcp.config import ServiceConfig, settings
from aap_mcp.loader import DocumentLoadError, default_service_urls, load_api_document
from aap_mcp.logging_config import configure_logging


def fetch_schema(
    service: str,
    output: Path,
    base_url: str,
    url: str | None = None,
    verify: bool = True,
    timeout: float = 30.0,
) -> int:
    """
    Download, normalize and write the API document of one backend.

    Args:
        service: Backend identifier ("eda", "gateway", "galaxy", "controller")
        output: Destination file
        base_url: Platform base URL for the default document location
        url: Explicit document URL, overriding the default location
        verify: Verify TLS certificates
        timeout: Request timeout in seconds

    Returns:
        The number of paths in the written document

    Raises:
        DocumentLoadError: If the document cannot be fetched or parsed
    """
    entry = ServiceConfig(name=service, url=url)
    with httpx.Client(verify=verify, timeout=timeout, follow_redirects=True) as client:
        document = load_api_document(entry, base_url, client)

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
    return len(document.get("paths") or {})


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Download a backend API document for use as a local_path.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Controller schema:
    %(prog)s --service controller --output data/controller-schema.json

  EDA schema from a platform instance:
    %(prog)s --service eda --base-url https://aap.example.com --output data/eda-schema.json
        """,
    )

    parser.add_argument(
        "--service",
        required=True,
        choices=sorted(default_service_urls(settings.base_url)),
        help="Backend whose document to download",
    )
    parser.add_argument(
        "--output",
        required=True,
        type=Path,
        help="Where to write the normalized document (JSON)",
    )
    parser.add_argument(
        "--base-url",
        default=settings.base_url,
        help=f"Platform base URL (default: {settings.base_url}, from MCP_BASE_URL)",
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Explicit document URL (default: the backend's well-known location)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS certificate verification",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.request_timeout,
        help="Request timeout in seconds",
    )

    args = parser.parse_args()
    configure_logging(settings.log_level)

    try:
        paths = fetch_schema(
            service=args.service,
            output=args.output,
            base_url=args.base_url,
            url=args.url,
            verify=not args.insecure,
            timeout=args.timeout,
        )
    except (DocumentLoadError, OSError) as error:
        print(f"Error: {error}", file=sys.stderr)
        sys.exit(1)

    print(f"Service:  {args.service}")
    print(f"Paths:    {paths}")
    print(f"Written:  {args.output}")


if __name__ == "__main__":
    main()
