import json
import os

from plancal.appconfig import DEFAULT_CONFIG


def run(config_path: str | None = None):
    print("Welcome to plancal configuration!")
    config = {}

    print("\n--- Server ---")
    base_url = input(f"Planner API base URL (default: {DEFAULT_CONFIG['api_base_url']}): ").strip()
    config["api_base_url"] = base_url or DEFAULT_CONFIG["api_base_url"]
    timeout = input(f"Request timeout in seconds (default: {DEFAULT_CONFIG['request_timeout']}): ").strip()
    config["request_timeout"] = int(timeout or DEFAULT_CONFIG["request_timeout"])

    print("\n--- Timezone ---")
    print("Used to decide which days are in the past.")
    timezone = input("Home timezone (default: UTC): ").strip()
    config["home_timezone"] = timezone or "UTC"

    print("\n--- Offline cache ---")
    cache_dir = input(f"Month cache folder (default: {DEFAULT_CONFIG['cache_dir']}): ").strip()
    config["cache_dir"] = cache_dir or DEFAULT_CONFIG["cache_dir"]
    http_cache_dir = input(f"Response cache folder (default: {DEFAULT_CONFIG['http_cache_dir']}): ").strip()
    config["http_cache_dir"] = http_cache_dir or DEFAULT_CONFIG["http_cache_dir"]
    ttl = input(f"Response cache TTL in seconds (default: {DEFAULT_CONFIG['http_cache_ttl']}): ").strip()
    config["http_cache_ttl"] = int(ttl or DEFAULT_CONFIG["http_cache_ttl"])

    debug_input = input("\nEnable debug logging? (y/N): ").strip().lower()
    config["debug"] = debug_input == "y"

    print("\nNote: set PLANCAL_EMAIL and PLANCAL_TOKEN in your .env file to sign in.")

    config_path = config_path or os.path.abspath("plancal_config.json")
    with open(config_path, "w") as f:
        json.dump(config, f, indent=4)
    print(f"\nConfiguration saved to {config_path}")
