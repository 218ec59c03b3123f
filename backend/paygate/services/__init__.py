"""services subpackage."""
