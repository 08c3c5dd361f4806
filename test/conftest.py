import argparse

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--vcd",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="whether to produce vcd files",
    )


@pytest.fixture
def run_sim(request):
    """Run a simulator, dumping a vcd named after the test when --vcd is given"""

    def run(sim):
        if request.config.getoption("--vcd"):
            with sim.write_vcd(f"{request.node.name}.vcd"):
                sim.run()
        else:
            sim.run()

    return run
