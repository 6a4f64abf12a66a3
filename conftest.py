import os


def pytest_configure(config):
    """Keep tests independent of a config file set in the shell."""
    os.environ.pop("GATEWAY_CONFIG", None)
