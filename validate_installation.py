#!/usr/bin/env python3
"""
Validation script for LDAP Object Reconciler.

This script checks that the dependencies are installed and that the
reconciliation core computes the expected changes without a server.
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
        "ldap_reconcile.config",
        "ldap_reconcile.delta",
        "ldap_reconcile.entry",
        "ldap_reconcile.errors",
        "ldap_reconcile.ldap_client",
        "ldap_reconcile.logging_setup",
        "ldap_reconcile.main",
        "ldap_reconcile.normalizer",
        "ldap_reconcile.reconciler",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False
    return all_ok


def validate_functionality():
    """Run the diff on known inputs."""
    print("\n=== Functionality Validation ===")

    try:
        from ldap_reconcile.delta import Add, Remove, Replace, diff
        from ldap_reconcile.normalizer import attribute_set

        deltas = diff({'a': '1', 'b': '2'}, {'b': '2', 'c': '3'})
        assert deltas == [Remove('a'), Add('c', ['3'])], deltas
        print("  ✓ Map-mode diff")

        old = attribute_set([{'mail': 'a'}, {'mail': 'b'}])
        new = attribute_set([{'mail': 'a'}, {'mail': 'c'}])
        assert diff(old, new) == [Replace('mail', ['a', 'c'])]
        print("  ✓ Set-mode diff")
        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def main():
    """Run all validations."""
    print("LDAP Object Reconciler - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Declare your LDAP connection and objects in config.yaml")
        print("  2. Preview changes with: ldap-reconcile --dry-run")
        print("  3. Apply them with: ldap-reconcile")
        return 0
    else:
        print("✗ Some validations failed!")
        return 1


if __name__ == "__main__":
    sys.exit(main())
