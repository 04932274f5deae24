#!/usr/bin/env python3
"""
OData Catalog MCP - command line entry point.

Reads the OData service's metadata, synthesizes an operation catalog from it and
serves every operation as an MCP tool over stdio or HTTP.
"""

import argparse
import asyncio
import os
import signal
import sys
import traceback
from pathlib import Path
from typing import Dict, List, Mapping, Optional
from dotenv import load_dotenv

from odata_catalog_lib import BridgeConfig, ConfigurationError, ODataMCPBridge, SynthesisProfile
from odata_catalog_lib.config import normalize_service_url, parse_http_addr
from odata_catalog_lib.models import Catalog, OperationKind
from odata_catalog_lib.naming import NamingConvention
from odata_catalog_lib.profile import DEFAULT_OPERATIONS, WRITE_OPERATIONS

# Load environment variables from .env file
load_dotenv()


def load_cookies_from_file(cookie_file: str) -> Optional[Dict[str, str]]:
    """Load cookies from a Netscape format cookie file."""
    cookies = {}

    try:
        with open(cookie_file, 'r') as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue

                # Parse Netscape format (7 fields separated by tabs)
                parts = line.split('\t')
                if len(parts) >= 7:
                    # domain, flag, path, secure, expiration, name, value
                    cookies[parts[5]] = parts[6]
                elif '=' in line:
                    # Simple key=value format fallback
                    key, value = line.split('=', 1)
                    cookies[key.strip()] = value.strip()

    except OSError as e:
        print(f"ERROR: Failed to read cookie file: {e}", file=sys.stderr)
        return None

    return cookies


def parse_cookie_string(cookie_string: str) -> Dict[str, str]:
    """Parse cookie string like 'key1=val1; key2=val2'."""
    cookies = {}
    for cookie in cookie_string.split(';'):
        cookie = cookie.strip()
        if '=' in cookie:
            key, value = cookie.split('=', 1)
            cookies[key.strip()] = value.strip()
    return cookies


def split_list(value: Optional[str]) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()] if value else []


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="OData Catalog MCP - expose an OData service as MCP tools",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter  # Show defaults in help
    )
    parser.add_argument("--service", dest="service_via_flag", help="URL of the OData service (overrides positional argument and ODATA_URL env var)")
    parser.add_argument("service_url_pos", nargs='?', help="URL of the OData service (alternative to --service flag or env var)")

    # Authentication options (mutually exclusive group)
    auth_group = parser.add_mutually_exclusive_group()
    auth_group.add_argument("-u", "--user", help="Username for basic authentication (overrides ODATA_USERNAME env var)")
    auth_group.add_argument("--cookie-file", help="Path to cookie file in Netscape format")
    auth_group.add_argument("--cookie-string", help="Cookie string (key1=val1; key2=val2)")
    parser.add_argument("-p", "--password", help="Password for basic authentication (overrides ODATA_PASSWORD env var)")
    parser.add_argument("-v", "--verbose", "--debug", dest="verbose", action="store_true", help="Enable verbose output to stderr")

    # Catalog shaping
    parser.add_argument("--naming", choices=[c.value for c in NamingConvention], default=NamingConvention.PASCAL.value, help="Tool naming convention")
    parser.add_argument("--tool-prefix", default="", help="Prefix added to every generated tool name")
    parser.add_argument("--tool-suffix", default="", help="Suffix added to every generated tool name")
    parser.add_argument("--entities", help="Comma-separated entity sets to generate tools for. Supports wildcards: 'Product*,Order*'")
    parser.add_argument("--exclude-entities", help="Comma-separated entity sets to skip. Supports wildcards")
    parser.add_argument("--read-only", action="store_true", help="Generate no create, update, delete or relationship-edit tools")
    parser.add_argument("--enable-search", action="store_true", help="Generate free-text search tools ($search)")
    parser.add_argument("--max-properties", type=int, help="Maximum number of properties per create/update tool (0 for no limit)")
    parser.add_argument("--include-binary-fields", action="store_true", help="Return binary and stream properties from list tools without an explicit select")
    parser.add_argument("--page-size", type=int, help="Default page size for list tools")
    parser.add_argument("--max-page-size", type=int, help="Maximum page size for list tools")

    # Runtime
    parser.add_argument("--cache-ttl", type=float, help="Seconds before the operation catalog is refreshed (default: ODATA_CACHE_TTL or 300)")
    parser.add_argument("--timeout", type=float, default=60, help="HTTP request timeout in seconds")
    parser.add_argument("--response-metadata", action="store_true", help="Keep @odata/__metadata annotations in responses")
    parser.add_argument("--trace", action="store_true", help="Load the catalog, print all tools and parameters, then exit (useful for debugging)")

    # Transport options
    parser.add_argument("--transport", choices=["stdio", "http", "sse"], default="stdio", help="Transport type")
    parser.add_argument("--http-addr", default=":8080", help="HTTP server address (used with --transport http or sse)")
    return parser


def resolve_service_url(args, env: Mapping[str, str]) -> str:
    """Priority: --service flag > positional argument > ODATA_URL / ODATA_SERVICE_URL."""
    service_url = args.service_via_flag or args.service_url_pos or env.get("ODATA_URL") or env.get("ODATA_SERVICE_URL")
    return normalize_service_url(service_url)


def resolve_auth(args, env: Mapping[str, str]):
    """Priority: cookie flags > basic auth flags > cookie env vars > basic auth env vars."""
    if args.cookie_file:
        if not Path(args.cookie_file).exists():
            raise ConfigurationError(f"Cookie file not found: {args.cookie_file}")
        auth = load_cookies_from_file(args.cookie_file)
        if not auth:
            raise ConfigurationError("Failed to load cookies from file")
        return auth

    if args.cookie_string:
        auth = parse_cookie_string(args.cookie_string)
        if not auth:
            raise ConfigurationError("Failed to parse cookie string")
        return auth

    env_user = env.get("ODATA_USER") or env.get("ODATA_USERNAME")
    env_pass = env.get("ODATA_PASS") or env.get("ODATA_PASSWORD")
    if args.user is None:
        env_cookie_file = env.get("ODATA_COOKIE_FILE")
        env_cookie_string = env.get("ODATA_COOKIE_STRING")
        if env_cookie_file and Path(env_cookie_file).exists():
            auth = load_cookies_from_file(env_cookie_file)
            if auth:
                return auth
        elif env_cookie_string:
            auth = parse_cookie_string(env_cookie_string)
            if auth:
                return auth

    final_user = args.user if args.user is not None else env_user
    final_pass = args.password if args.password is not None else env_pass
    if final_user and final_pass:
        return (final_user, final_pass)
    return None


def build_profile(args) -> SynthesisProfile:
    operations = set(DEFAULT_OPERATIONS)
    if args.enable_search:
        operations.add(OperationKind.SEARCH)
    if args.read_only:
        operations -= WRITE_OPERATIONS

    overrides = {
        'operations': frozenset(operations),
        'naming_convention': args.naming,
        'tool_prefix': args.tool_prefix or "",
        'tool_suffix': args.tool_suffix or "",
        'include_entity_sets': frozenset(split_list(args.entities)),
        'exclude_entity_sets': frozenset(split_list(args.exclude_entities)),
        'exclude_binary_fields': not args.include_binary_fields,
    }
    if args.max_properties is not None:
        overrides['max_properties_per_tool'] = args.max_properties or None
    if args.page_size is not None:
        overrides['default_page_size'] = args.page_size
    if args.max_page_size is not None:
        overrides['max_page_size'] = args.max_page_size
    return SynthesisProfile.layered(overrides)


def build_config(args, env: Optional[Mapping[str, str]] = None) -> BridgeConfig:
    """Combine command line flags with environment variables. Raises ConfigurationError."""
    env = os.environ if env is None else env
    service_url = resolve_service_url(args, env)

    cache_ttl = args.cache_ttl
    if cache_ttl is None and env.get("ODATA_CACHE_TTL"):
        try:
            cache_ttl = float(env["ODATA_CACHE_TTL"])
        except ValueError:
            raise ConfigurationError(f"Invalid ODATA_CACHE_TTL: {env['ODATA_CACHE_TTL']}") from None

    host, port = parse_http_addr(args.http_addr)
    return BridgeConfig(
        service_url=service_url,
        auth=resolve_auth(args, env),
        verbose=args.verbose,
        profile=build_profile(args),
        cache_ttl=300 if cache_ttl is None else cache_ttl,
        request_timeout=args.timeout,
        response_metadata=args.response_metadata,
        transport=args.transport,
        http_host=host,
        http_port=port,
    )


def print_trace_info(bridge: ODataMCPBridge, catalog: Catalog):
    """Print the configuration and every synthesized tool with its parameters."""
    config = bridge.config
    profile = config.profile
    print("=" * 80)
    print("🔍 OData Catalog MCP Trace Information")
    print("=" * 80)

    print(f"\n🌐 Service URL: {bridge.service_url}")
    print(f"🔧 MCP Name: {bridge.mcp.name}")
    print(f"🔐 Authentication: {config.auth_summary}")
    print(f"📝 Naming: {profile.naming_convention.value} (prefix '{profile.tool_prefix}', suffix '{profile.tool_suffix}')")
    print(f"🎯 Entity Filter: {', '.join(sorted(profile.include_entity_sets)) or 'None (all entity sets)'}")
    print(f"⏱️ Cache TTL: {config.cache_ttl}s, request timeout: {config.request_timeout}s")

    model = catalog.model
    print(f"\n📊 Metadata Summary:")
    print(f"   • OData Version: {model.version}")
    print(f"   • Service Description: {model.service_description or 'Not provided'}")
    print(f"   • Entity Types: {len(model.entity_types)}")
    print(f"   • Entity Sets: {sum(len(c.entity_sets) for c in model.containers.values())}")
    print(f"   • Function Imports: {sum(len(c.function_imports) + len(c.action_imports) for c in model.containers.values())}")

    print(f"\n🛠️ Registered MCP Tools ({len(bridge.tool_names)} total):")
    by_set: Dict[str, List[str]] = {}
    for descriptor in catalog.descriptors:
        by_set.setdefault(descriptor.entity_set or "-", []).append(descriptor.name)
    for set_name, names in by_set.items():
        print(f"   📁 {set_name}: {', '.join(names)}")

    print(f"\n🔍 Detailed Tool Information:")
    print("=" * 60)
    for descriptor in catalog.descriptors:
        print(f"\n🛠️ Tool: {descriptor.name} ({descriptor.kind.value})")
        required = set(descriptor.required_parameters)
        properties = descriptor.input_schema.get("properties", {})
        if properties:
            print("   📝 Parameters:")
            for name, schema in properties.items():
                req_str = "required" if name in required else "optional"
                print(f"      • {name}: {schema.get('type', 'any')} ({req_str})")
        else:
            print("   📝 Parameters: None")
        lines = descriptor.description.split('\n')
        print("   📚 Description:")
        for line in lines[:5]:
            print(f"      {line}")
        if len(lines) > 5:
            print("      ... (truncated)")

    print("\n" + "=" * 80)
    print("✅ Trace complete - catalog synthesized successfully but server not started")
    print("💡 Use without --trace to start the actual MCP server")
    print("=" * 80)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        print("Provide the service via the --service flag, as a positional argument, or ODATA_URL environment variable.", file=sys.stderr)
        parser.print_help(file=sys.stderr)
        sys.exit(1)

    if args.verbose:
        print(f"[VERBOSE] Service: {config.service_url}; authentication: {config.auth_summary}", file=sys.stderr)

    # Handle SIGINT (Ctrl+C) and SIGTERM gracefully
    def signal_handler(sig, frame):
        print(f"\n{signal.Signals(sig).name} received, shutting down server...", file=sys.stderr)
        sys.exit(0)
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        bridge = ODataMCPBridge(config)
        if args.trace:
            catalog = asyncio.run(bridge.initialize())
            print_trace_info(bridge, catalog)
            sys.exit(0)
        bridge.run()
    except Exception as e:
        # Fatal error, print regardless of verbosity
        print(f"\n--- FATAL ERROR ---", file=sys.stderr)
        print(f"An unexpected error occurred during startup or runtime: {e}", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        print("-------------------", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
