"""mocks subpackage."""
