#!/usr/bin/env python3
"""
Validation script for deputize.

Checks that dependencies and modules import, that a sample configuration
validates, and that the CLI answers.
"""

import sys
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
        ("boto3", "boto3"),
        ("pytest", "pytest"),
        ("pytest-mock", "pytest_mock"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "deputize.config",
        "deputize.secrets",
        "deputize.main",
        "deputize.reconciler",
        "deputize.resolver",
        "deputize.diff",
        "deputize.roster",
        "deputize.ldap_client",
        "deputize.http_client",
        "deputize.notifications",
        "deputize.retry",
        "deputize.sinks.base",
        "deputize.sinks.ldap_sink",
        "deputize.sinks.gitlab_sink",
        "deputize.sinks.slack_sink",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Validate key functionality."""
    print("\n=== Functionality Validation ===")

    try:
        from deputize.config import ConfigLoader
        config = ConfigLoader().load_dict({
            'source': {'pagerduty': {'enabled': True, 'on_call_schedules': ['Primary']}},
            'sinks': [{'name': 'slack', 'module': 'slack_sink', 'channels': ['C0123']}],
        })
        print("  ✓ Configuration validation")

        from deputize.main import DeputizeApp
        from deputize.secrets import SecretBundle
        sinks = DeputizeApp.build_sinks(config, SecretBundle(slack_auth_token='x'))
        assert [sink.name for sink in sinks] == ['slack:C0123']
        print("  ✓ Sink module loading")

        from deputize.diff import diff
        plan = diff({'alice', 'bob'}, {'bob', 'carol'})
        assert plan.to_remove == ('carol',) and plan.to_add == ('alice',)
        print("  ✓ Diff engine")

        from deputize.retry import call_with_retries
        assert call_with_retries(lambda: "test", "smoke test") == "test"
        print("  ✓ Retry mechanism")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    try:
        import subprocess

        result = subprocess.run([sys.executable, "-m", "deputize.main", "--help"],
                                capture_output=True, text=True)
        if result.returncode != 0:
            print("  ✗ Help command failed")
            return False
        print("  ✓ Help command working")

        result = subprocess.run([sys.executable, "-m", "deputize.main", "version"],
                                capture_output=True, text=True)
        if result.returncode != 0 or not result.stdout.startswith("deputize "):
            print("  ✗ Version command failed")
            return False
        print("  ✓ Version command working")

        return True

    except Exception as e:
        print(f"  ✗ CLI validation failed: {e}")
        return False


def main():
    """Run all validations."""
    print("deputize - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Configure the roster source and sinks in config.yaml")
        print("  2. Provide secrets in secrets_file or DEPUTIZE_* environment variables")
        print("  3. Preview with: deputize oncall --dry-run")
        print("  4. Reconcile with: deputize oncall")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
