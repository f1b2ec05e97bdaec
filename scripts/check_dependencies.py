#!/usr/bin/env python3
"""Check and report status of capture pipeline dependencies.

Run this script to verify your environment is properly configured:
    python scripts/check_dependencies.py
"""

import sys


def check_python_version():
    """Check Python version."""
    version = sys.version_info
    if version.major >= 3 and version.minor >= 10:
        print(f"  Python: {sys.version.split()[0]}")
        return True
    else:
        print(f"  Python: {sys.version.split()[0]} (requires >= 3.10)")
        return False


def check_package(name: str, import_name: str = None, version_attr: str = "__version__"):
    """Check if a package is installed and return version."""
    import_name = import_name or name
    try:
        module = __import__(import_name)
        version = getattr(module, version_attr, "available")
        return True, version
    except ImportError:
        return False, None


def check_tiff_support():
    """Check that Pillow can write LZW-compressed multi-page TIFFs."""
    try:
        from PIL import features
    except ImportError:
        return False, "Pillow not installed"
    if features.check("libtiff"):
        return True, "libtiff available (LZW, deflate)"
    return False, "libtiff missing (use compression: raw or packbits)"


def main():
    print("=" * 60)
    print("Depth Capture - Dependency Check")
    print("=" * 60)
    print()

    all_ok = True

    print("REQUIRED DEPENDENCIES:")
    print("-" * 60)

    if not check_python_version():
        all_ok = False

    packages = [
        ("numpy", "numpy", "NumPy"),
        ("opencv-python", "cv2", "OpenCV"),
        ("Pillow", "PIL", "Pillow"),
        ("PyYAML", "yaml", "PyYAML"),
    ]

    for pip_name, import_name, display_name in packages:
        ok, version = check_package(import_name)
        if ok:
            print(f"  {display_name}: {version}")
        else:
            print(f"  {display_name}: NOT INSTALLED")
            print(f"    Install with: pip install {pip_name}")
            all_ok = False

    print()
    print("TIFF ENCODING:")
    print("-" * 60)

    ok, detail = check_tiff_support()
    print(f"  Compression: {detail}")

    print()
    print("TEST DEPENDENCIES:")
    print("-" * 60)

    ok, version = check_package("pytest")
    if ok:
        print(f"  pytest: {version}")
    else:
        print("  pytest: NOT INSTALLED (pip install -e .[test])")

    print()
    print("=" * 60)

    if all_ok:
        print("CAPTURE STATUS: READY")
    else:
        print("CAPTURE STATUS: NOT READY")
        print("Install missing dependencies before capturing.")

    print("=" * 60)

    return 0 if all_ok else 1


if __name__ == "__main__":
    sys.exit(main())
