"""CLI for servstats utilities."""

from __future__ import annotations

import argparse
import os
import sys
import urllib.error
import urllib.request

from servstats.config import (
    CONFIG_FILE_NAME,
    DEFAULT_SCRAPE_HOST,
    DEFAULT_SCRAPE_PORT,
    ENV_VAR_MAPPING,
    find_config_file,
    load_config,
    validate_config,
)
from servstats.errors import ConfigError


CONFIG_TEMPLATE = """# servstats configuration file

[exporters]
# Expose metrics on an HTTP endpoint for Prometheus to scrape
enable_scrape_exporter = false

# Periodically write metrics to the console
enable_stream_exporter = false

[exporters.scrape_exporter]
host = "{scrape_host}"
port = {scrape_port}

[exporters.stream_reader]
# Milliseconds between two console exports
export_interval_millis = 60000
export_timeout_millis = 30000
# stdout or stderr
output = "stdout"

[meter]
name = "stats"
# service_name = "game-server"

[histograms]
# Exponential bucket aggregation for the latency histograms
max_buckets = 255
max_scale = 20

[logging]
debug = false
"""


def _check(args) -> int:
    """Check that the scrape endpoint answers."""
    try:
        config = load_config(config_file=args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    url = args.url or config.exporters.scrape_exporter.url
    if not args.url and not config.exporters.enable_scrape_exporter:
        print("Scrape exporter is disabled in the configuration; checking anyway.")
    print(f"Checking scrape endpoint {url}...")
    sys.stdout.flush()

    try:
        with urllib.request.urlopen(url, timeout=5) as resp:
            print(f"Endpoint is reachable (HTTP {resp.getcode()})")
            return 0
    except urllib.error.HTTPError as exc:
        print(f"HTTP Error {exc.code}: {exc.reason}", file=sys.stderr)
        return 1
    except urllib.error.URLError as exc:
        print(f"Connection failed: {exc.reason}", file=sys.stderr)
        print("   Make sure the server is running with the scrape exporter enabled", file=sys.stderr)
        return 1


def _config_init(args) -> int:
    """Write a servstats.toml template in the current directory."""
    config_path = os.path.join(os.getcwd(), CONFIG_FILE_NAME)

    if os.path.exists(config_path) and not args.force:
        print(f"Config file already exists at {config_path}", file=sys.stderr)
        print("   Use --force to overwrite", file=sys.stderr)
        return 1

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(CONFIG_TEMPLATE.format(scrape_host=DEFAULT_SCRAPE_HOST, scrape_port=DEFAULT_SCRAPE_PORT))
    except OSError as exc:
        print(f"Failed to create config file: {exc}", file=sys.stderr)
        return 1

    print(f"Created config file at {config_path}")
    print("   Run `servstats doctor` to validate it")
    return 0


def _doctor(args) -> int:
    """Validate configuration and report what would be exported."""
    print("Running servstats configuration diagnostics...\n")

    issues_found = 0

    config_file = args.config
    if config_file:
        if not os.path.exists(config_file):
            print(f"Specified config file not found: {config_file}")
            return 1
    else:
        config_file = find_config_file()
        if config_file:
            print(f"Found config file: {config_file}")
        else:
            print(f"No config file found (checked ./{CONFIG_FILE_NAME} and ~/.servstats/config.toml)")
            print("   Run `servstats config init` to create one")

    print("\nEnvironment variables:")
    found_env_vars = [env_var for env_vars in ENV_VAR_MAPPING.values() for env_var in env_vars if os.getenv(env_var)]
    for env_var in found_env_vars:
        print(f"   {env_var} is set")
    if not found_env_vars:
        print("   No SERVSTATS_* environment variables set")

    print("\nValidating configuration...")
    is_valid, message, config = validate_config(config_file=config_file)

    if not is_valid:
        print(message)
        issues_found += 1
    else:
        print(message)
        exporters = config.exporters
        print("\nConfiguration summary:")
        print(f"   Meter: {config.meter.name} {config.meter.version}")
        print(f"   Stream exporter: {'enabled' if exporters.enable_stream_exporter else 'disabled'}"
              f" (every {exporters.stream_reader.export_interval_millis} ms to {exporters.stream_reader.output})")
        print(f"   Scrape exporter: {'enabled' if exporters.enable_scrape_exporter else 'disabled'}"
              f" ({exporters.scrape_exporter.url})")

        if not exporters.any_enabled:
            print("\nWarning: no exporter is enabled, metrics will be discarded.")
            issues_found += 1

    print("\n" + "=" * 60)
    if issues_found == 0:
        print("No issues found.")
        return 0
    print(f"Found {issues_found} issue(s). Please review the messages above.")
    return 1


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="servstats",
        description="servstats - in-process server metrics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  servstats config init            Create a new config file
  servstats doctor                 Validate configuration
  servstats check                  Query the scrape endpoint
  servstats check --url URL        Query a specific endpoint
        """
    )

    parser.add_argument(
        "--config",
        help=f"Path to config file (default: ./{CONFIG_FILE_NAME} or ~/.servstats/config.toml)"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser(
        "check",
        help="Verify the scrape endpoint answers",
        description="Fetch the configured Prometheus scrape endpoint"
    )
    check.add_argument("--url", help="Override endpoint URL")
    check.set_defaults(func=_check)

    config = sub.add_parser(
        "config",
        help="Configuration management",
        description="Manage servstats configuration files"
    )
    config_sub = config.add_subparsers(dest="config_command", required=True)

    config_init = config_sub.add_parser(
        "init",
        help=f"Create {CONFIG_FILE_NAME}",
        description=f"Initialize a new {CONFIG_FILE_NAME} in the current directory"
    )
    config_init.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing config file"
    )
    config_init.set_defaults(func=_config_init)

    doctor = sub.add_parser(
        "doctor",
        help="Validate configuration and diagnose issues",
        description="Run diagnostics on your servstats configuration"
    )
    doctor.set_defaults(func=_doctor)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
