"""Tests for resilience module."""


def test_resilience_imports():
    """Test that resilience module can be imported."""
    from favorants.resilience import (
        ConnectivityMonitor,
        RetryConfig,
        execute_with_retry,
        with_async_timeout,
    )

    assert execute_with_retry is not None
    assert with_async_timeout is not None
    assert ConnectivityMonitor is not None
    assert RetryConfig is not None
