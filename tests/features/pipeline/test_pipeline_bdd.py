"""BDD tests for the request telemetry pipeline."""

import pytest
from pytest_bdd import scenarios

scenarios(".")

pytestmark = [
    pytest.mark.tier(3),
    pytest.mark.tra("Pipeline.RequestTelemetry"),
]
