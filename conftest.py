import asyncio

import pytest

from zk.ceremony import setup
from zk.programs import builtin_program


def pytest_configure(config):
    # Register common markers used across the repo without requiring external plugins.
    config.addinivalue_line(
        "markers", "asyncio: mark test as requiring asyncio event loop"
    )


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """
    Provide a minimal asyncio runner for tests marked with @pytest.mark.asyncio when
    pytest-asyncio isn't available in the environment.
    """
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    test_func = pyfuncitem.obj
    if asyncio.iscoroutinefunction(test_func):
        # Only pass fixtures that correspond to the function signature.
        argnames = getattr(pyfuncitem, "_fixtureinfo", None)
        wanted = set(getattr(argnames, "argnames", []) or [])
        kwargs = {k: v for k, v in pyfuncitem.funcargs.items() if k in wanted}
        asyncio.run(test_func(**kwargs))
        return True
    return None


@pytest.fixture(scope="session")
def setups():
    """Seeded dev setup for both built-in circuits (computed once per session)."""
    return {name: setup(builtin_program(name), seed=f"fixtures:{name}") for name in ("inference", "training")}
