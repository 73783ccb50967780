"""
Actuator version information.

Version follows semantic versioning (https://semver.org/): MAJOR.MINOR.PATCH
"""

# Version components
MAJOR = 0
MINOR = 1
PATCH = 0

# Full version string
__version__ = f"{MAJOR}.{MINOR}.{PATCH}"
__app_name__ = "SEKS Actuator"
