"""Version string shown by the command line."""


def build_version(version: str, commit: str) -> str:
    """Combine a release version with an optional commit id."""
    if commit:
        return f"{version}\ncommit: {commit}"
    return version